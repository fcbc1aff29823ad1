# settlement/services/bank_accounts.py

from __future__ import annotations

import logging
import re
from typing import Optional

from django.db import transaction

from settlement.exceptions import ValidationError
from settlement.models import SalonBankAccount
from settlement.utils.bank_directory import BankDirectory, get_bank_directory, is_valid_ifsc

logger = logging.getLogger(__name__)

UPI_RE = re.compile(r"^[\w.-]+@[\w]+$")


def is_valid_upi(upi_id: str) -> bool:
    return bool(UPI_RE.match((upi_id or "").strip()))


def add_bank_account(
    salon,
    *,
    account_holder_name: str,
    account_type: str = "bank",
    account_number: str = "",
    ifsc_code: str = "",
    upi_id: str = "",
    directory: Optional[BankDirectory] = None,
) -> SalonBankAccount:
    """
    Register a payout destination. The first one a salon adds becomes primary.

    The IFSC is resolved for display only; if the directory is down the
    account is still created with an empty bank name.
    """
    holder = (account_holder_name or "").strip()
    account_number = (account_number or "").replace(" ", "").strip()
    ifsc_code = (ifsc_code or "").strip().upper()
    upi_id = (upi_id or "").strip()

    if not holder:
        raise ValidationError("Account holder name is required")

    if account_type == "bank":
        if not account_number or not account_number.isdigit():
            raise ValidationError("A numeric account number is required")
        if not is_valid_ifsc(ifsc_code):
            raise ValidationError("Invalid IFSC code format")
    elif account_type == "upi":
        if not upi_id:
            raise ValidationError("UPI id is required")
    else:
        raise ValidationError(f"Unknown account type {account_type!r}")

    if upi_id and not is_valid_upi(upi_id):
        raise ValidationError("Invalid UPI id format")

    branch = None
    if ifsc_code:
        directory = directory or get_bank_directory()
        try:
            branch = directory.resolve(ifsc_code)
        except Exception:
            logger.exception("Bank directory lookup for %s failed", ifsc_code)
        if branch is None:
            logger.info("IFSC %s not resolved; saving without display metadata", ifsc_code)

    with transaction.atomic():
        has_primary = SalonBankAccount.objects.select_for_update().filter(salon=salon, is_primary=True).exists()
        account = SalonBankAccount.objects.create(
            salon=salon,
            account_type=account_type,
            account_holder_name=holder,
            account_number=account_number,
            ifsc_code=ifsc_code,
            upi_id=upi_id,
            bank_name=branch.bank_name if branch else "",
            branch=branch.branch if branch else "",
            city=branch.city if branch else "",
            state=branch.state if branch else "",
            is_primary=not has_primary,
        )

    logger.info("Salon %s added %s destination %s", salon.pk, account_type, account.pk)
    return account


def set_primary(account: SalonBankAccount) -> SalonBankAccount:
    """Clear the old primary and set the new one in one atomic unit."""
    with transaction.atomic():
        list(SalonBankAccount.objects.select_for_update().filter(salon_id=account.salon_id))
        SalonBankAccount.objects.filter(salon_id=account.salon_id, is_primary=True).exclude(
            pk=account.pk
        ).update(is_primary=False)
        SalonBankAccount.objects.filter(pk=account.pk).update(is_primary=True)

    account.is_primary = True
    logger.info("Destination %s is now primary for salon %s", account.pk, account.salon_id)
    return account


def verify_account(account: SalonBankAccount, admin=None) -> SalonBankAccount:
    if not account.is_verified:
        account.is_verified = True
        account.save(update_fields=["is_verified", "updated_at"])
        logger.info("Destination %s verified by %s", account.pk, getattr(admin, "pk", None))
    return account


def primary_destination(salon, verified_only: bool = False) -> Optional[SalonBankAccount]:
    """Primary destination, falling back to the oldest one (verified only when asked)."""
    qs = SalonBankAccount.objects.filter(salon=salon)
    if verified_only:
        qs = qs.filter(is_verified=True)
    return qs.order_by("-is_primary", "created_at", "id").first()
