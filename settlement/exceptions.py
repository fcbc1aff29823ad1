# settlement/exceptions.py

from __future__ import annotations

from decimal import Decimal


class SettlementError(Exception):
    """Base class for every error the settlement engine reports to callers."""

    code = "settlement_error"
    http_status = 400

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.message}


class ValidationError(SettlementError):
    code = "validation_error"


class InsufficientBalance(SettlementError):
    code = "insufficient_balance"

    def __init__(self, message: str = "", *, requested: Decimal | None = None, available: Decimal | None = None):
        super().__init__(message or "Insufficient balance")
        self.requested = requested
        self.available = available

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.requested is not None:
            data["requested"] = str(self.requested)
        if self.available is not None:
            data["available"] = str(self.available)
        return data


class GatewayDeclined(SettlementError):
    """
    Payment authorization failed. Carries the gateway's structured failure so the
    client can render a failure banner and decide whether to auto-retry.
    """

    code = "gateway_declined"
    http_status = 402

    def __init__(
        self,
        reason: str,
        *,
        error_code: str = "",
        source: str = "",
        step: str = "",
        retryable: bool = False,
    ):
        super().__init__(reason)
        self.error_code = error_code
        self.reason = reason
        self.source = source
        self.step = step
        self.retryable = retryable

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "error_code": self.error_code,
            "reason": self.reason,
            "source": self.source,
            "step": self.step,
            "retryable": self.retryable,
        })
        return data


class PartialFailure(SettlementError):
    """
    The wallet portion of a split payment committed but the online charge did not.
    Needs manual reconciliation; the wallet debit is NOT reversed automatically.
    """

    code = "partial_failure"
    http_status = 409

    def __init__(self, *, wallet_amount: Decimal, declined: GatewayDeclined, booking_id=None):
        super().__init__(
            f"Wallet amount {wallet_amount} was deducted but the online payment failed: {declined.reason}"
        )
        self.wallet_amount = wallet_amount
        self.declined = declined
        self.booking_id = booking_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["wallet_amount"] = str(self.wallet_amount)
        data["requires_reconciliation"] = True
        data["gateway"] = self.declined.to_dict()
        return data


class ReconciliationRequired(SettlementError):
    """
    The customer was charged but the payment could not be recorded. Never
    retried: a second capture would charge again.
    """

    code = "reconciliation_required"
    http_status = 409

    def __init__(self, message: str = "", *, booking_id=None, gateway_payment_id: str = "",
                 charged_amount: Decimal | None = None):
        super().__init__(message or "Payment was taken but could not be recorded")
        self.booking_id = booking_id
        self.gateway_payment_id = gateway_payment_id
        self.charged_amount = charged_amount

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["booking_id"] = self.booking_id
        data["gateway_payment_id"] = self.gateway_payment_id
        if self.charged_amount is not None:
            data["charged_amount"] = str(self.charged_amount)
        data["requires_reconciliation"] = True
        return data


class ConcurrencyConflict(SettlementError):
    """Lost a race for a locked balance; re-fetch and retry once."""

    code = "concurrency_conflict"
    http_status = 409


class InvalidTransition(SettlementError):
    code = "invalid_transition"
    http_status = 409
