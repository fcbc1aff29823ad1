# settlement/gateways.py

"""
Payment Authorization Service boundary.

The settlement ledger only ever sees `AuthorizationResult`; the gateway's own
retry/webhook protocol stays on the other side of this interface.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import requests
from django.conf import settings
from django.utils.module_loading import import_string

from settlement.exceptions import GatewayDeclined
from settlement.utils.money import to_paise

logger = logging.getLogger(__name__)

RETRYABLE_ERROR_CODES = {"SERVER_ERROR", "GATEWAY_ERROR", "TIMEOUT", "NETWORK_ERROR"}


@dataclass
class AuthorizationResult:
    success: bool
    payment_id: str = ""
    error_code: str = ""
    error_reason: str = ""
    error_source: str = ""
    error_step: str = ""
    retryable: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, payment_id: str, raw: Optional[dict] = None) -> "AuthorizationResult":
        return cls(success=True, payment_id=payment_id, raw=raw or {})

    @classmethod
    def declined(cls, error_code: str, error_reason: str, *, source: str = "", step: str = "",
                 retryable: Optional[bool] = None, raw: Optional[dict] = None) -> "AuthorizationResult":
        if retryable is None:
            retryable = error_code in RETRYABLE_ERROR_CODES
        return cls(
            success=False,
            error_code=error_code,
            error_reason=error_reason,
            error_source=source,
            error_step=step,
            retryable=retryable,
            raw=raw or {},
        )

    def to_exception(self) -> GatewayDeclined:
        return GatewayDeclined(
            self.error_reason or "Payment was declined",
            error_code=self.error_code,
            source=self.error_source,
            step=self.error_step,
            retryable=self.retryable,
        )


class PaymentAuthorizationService:
    def authorize(self, amount: Decimal, payer_ref: str, metadata: Dict[str, Any]) -> AuthorizationResult:
        raise NotImplementedError


class RazorpayAuthorizationService(PaymentAuthorizationService):
    """
    Captures a payment the customer already authorized in Razorpay checkout.
    Expects `metadata["razorpay_payment_id"]`.
    """

    def __init__(self, key_id: str | None = None, key_secret: str | None = None,
                 base_url: str | None = None, timeout: int = 25):
        self.key_id = key_id if key_id is not None else getattr(settings, "RAZORPAY_KEY_ID", "")
        self.key_secret = key_secret if key_secret is not None else getattr(settings, "RAZORPAY_KEY_SECRET", "")
        self.base_url = (base_url or getattr(settings, "RAZORPAY_BASE_URL", "https://api.razorpay.com/v1")).rstrip("/")
        self.timeout = timeout

    def authorize(self, amount: Decimal, payer_ref: str, metadata: Dict[str, Any]) -> AuthorizationResult:
        payment_id = (metadata.get("razorpay_payment_id") or "").strip()
        if not payment_id:
            return AuthorizationResult.declined(
                "BAD_REQUEST_ERROR",
                "No Razorpay payment id supplied",
                source="business",
                step="payment_initiation",
            )

        url = f"{self.base_url}/payments/{payment_id}/capture"
        payload = {"amount": to_paise(amount), "currency": "INR"}

        try:
            r = requests.post(url, auth=(self.key_id, self.key_secret), json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout:
            return AuthorizationResult.declined("TIMEOUT", "Payment gateway timed out", source="gateway",
                                                step="payment_capture")
        except requests.RequestException as e:
            return AuthorizationResult.declined("NETWORK_ERROR", str(e), source="gateway", step="payment_capture")

        try:
            data = r.json() if r.content else {}
        except ValueError:
            logger.warning("Razorpay returned a non-JSON body for %s (HTTP %s)", payment_id, r.status_code)
            data = {}
        if not isinstance(data, dict):
            data = {}

        if 200 <= r.status_code < 300 and data.get("status") == "captured":
            return AuthorizationResult.ok(data.get("id") or payment_id, raw=data)

        err = data.get("error") or {}
        code = err.get("code") or ("SERVER_ERROR" if r.status_code >= 500 else "BAD_REQUEST_ERROR")
        logger.warning("Razorpay capture failed for %s (payer %s): %s", payment_id, payer_ref, err or data)
        return AuthorizationResult.declined(
            code,
            err.get("description") or err.get("reason") or "Payment could not be captured",
            source=err.get("source") or "",
            step=err.get("step") or "payment_capture",
            raw=data,
        )


def get_payment_authorization_service() -> PaymentAuthorizationService:
    return import_string(settings.PAYMENT_AUTHORIZATION_BACKEND)()
