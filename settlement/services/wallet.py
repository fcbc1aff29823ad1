# settlement/services/wallet.py

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from django.db import OperationalError, transaction

from settlement.exceptions import ConcurrencyConflict, InsufficientBalance, ValidationError
from settlement.models import Wallet, WalletTransaction
from settlement.utils.money import ZERO, q

logger = logging.getLogger(__name__)

CATEGORIES = {c for c, _ in WalletTransaction.CATEGORY_CHOICES}


def get_or_create_wallet(user) -> Wallet:
    wallet, _ = Wallet.objects.get_or_create(user=user)
    return wallet


def _clean(amount, category: str) -> Decimal:
    if category not in CATEGORIES:
        raise ValidationError(f"Unknown wallet category {category!r}")
    try:
        amount = q(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid amount") from None
    if amount <= ZERO:
        raise ValidationError("Amount must be greater than zero")
    return amount


def credit(user, amount, category: str, reference_id: str = "", description: str = "") -> WalletTransaction:
    """
    Append a credit and bump balance/total_earned in the same atomic unit.
    """
    amount = _clean(amount, category)
    wallet = get_or_create_wallet(user)

    try:
        with transaction.atomic():
            wallet = Wallet.objects.select_for_update().get(pk=wallet.pk)
            wallet.balance = q(wallet.balance + amount)
            wallet.total_earned = q(wallet.total_earned + amount)
            wallet.save(update_fields=["balance", "total_earned", "updated_at"])

            txn = WalletTransaction.objects.create(
                wallet=wallet,
                user=user,
                amount=amount,
                type="credit",
                category=category,
                reference_id=str(reference_id or ""),
                description=description,
                balance_after=wallet.balance,
            )
    except OperationalError as e:
        raise ConcurrencyConflict(f"Wallet {wallet.pk} is busy, retry") from e

    logger.info("Wallet %s credited %s (%s)", wallet.pk, amount, category)
    return txn


def debit(user, amount, category: str, reference_id: str = "", description: str = "",
          dedupe: bool = False) -> WalletTransaction:
    """
    Append a debit and reduce balance / bump total_spent atomically.

    The balance check happens on the locked row, so two concurrent debits can
    never both pass against a stale read. With `dedupe=True` an existing debit
    for the same (category, reference_id) is returned instead of debiting again.
    """
    amount = _clean(amount, category)
    wallet = get_or_create_wallet(user)

    try:
        with transaction.atomic():
            wallet = Wallet.objects.select_for_update().get(pk=wallet.pk)

            if dedupe and reference_id:
                existing = WalletTransaction.objects.filter(
                    wallet=wallet,
                    type="debit",
                    category=category,
                    reference_id=str(reference_id),
                ).first()
                if existing:
                    return existing

            if amount > wallet.balance:
                raise InsufficientBalance(
                    "Insufficient wallet balance",
                    requested=amount,
                    available=wallet.balance,
                )

            wallet.balance = q(wallet.balance - amount)
            wallet.total_spent = q(wallet.total_spent + amount)
            wallet.save(update_fields=["balance", "total_spent", "updated_at"])

            txn = WalletTransaction.objects.create(
                wallet=wallet,
                user=user,
                amount=amount,
                type="debit",
                category=category,
                reference_id=str(reference_id or ""),
                description=description,
                balance_after=wallet.balance,
            )
    except OperationalError as e:
        raise ConcurrencyConflict(f"Wallet {wallet.pk} is busy, retry") from e

    logger.info("Wallet %s debited %s (%s)", wallet.pk, amount, category)
    return txn


def find_debit(user, category: str, reference_id: str):
    return WalletTransaction.objects.filter(
        user=user,
        type="debit",
        category=category,
        reference_id=str(reference_id),
    ).first()


def recompute_wallet(wallet: Wallet) -> Wallet:
    """
    Rebuild the cached aggregate from the append-only transactions.
    """
    with transaction.atomic():
        wallet = Wallet.objects.select_for_update().get(pk=wallet.pk)
        earned = spent = ZERO
        for txn in wallet.transactions.all():
            if txn.type == "credit":
                earned += txn.amount
            else:
                spent += txn.amount
        wallet.total_earned = q(earned)
        wallet.total_spent = q(spent)
        wallet.balance = q(earned - spent)
        wallet.save(update_fields=["balance", "total_earned", "total_spent", "updated_at"])
    return wallet
