# settlement/rails.py

"""
Payout rails: the external side of a salon payout (bank transfer / UPI).

A rail is asked to move `payout.net_amount` once the payout is `processing`.
Final success/failure comes back later through `finalize_payout_from_rail`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict

import requests
from django.conf import settings
from django.utils.module_loading import import_string

from settlement.utils.money import to_paise

logger = logging.getLogger(__name__)

RAIL_MODES = {
    "bank_transfer": "IMPS",
    "upi": "UPI",
    "instant_upi": "UPI",
}


class PayoutRailError(Exception):
    pass


@dataclass
class RailResult:
    reference: str
    rail_payout_id: str = ""
    status: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


def generate_reference(payout_id) -> str:
    return f"GRM_PAYOUT_{payout_id}_{uuid.uuid4().hex[:10].upper()}"


def rail_mode_for(method: str) -> str:
    try:
        return RAIL_MODES[method]
    except KeyError:
        raise PayoutRailError(f"No payout rail for method {method!r}")


class PayoutRail:
    def initiate(self, payout) -> RailResult:
        raise NotImplementedError

    def fetch_status(self, payout) -> str:
        """Current rail status string for a processing payout ('' if unknown)."""
        return ""


class ManualPayoutRail(PayoutRail):
    """Admins transfer by hand and then mark the payout complete."""

    def initiate(self, payout) -> RailResult:
        return RailResult(reference=generate_reference(payout.id), status="manual")


class RazorpayXPayoutRail(PayoutRail):
    def __init__(self, timeout: int = 25):
        self.base_url = getattr(settings, "RAZORPAY_BASE_URL", "https://api.razorpay.com/v1").rstrip("/")
        self.auth = (getattr(settings, "RAZORPAY_KEY_ID", ""), getattr(settings, "RAZORPAY_KEY_SECRET", ""))
        self.account_number = getattr(settings, "RAZORPAYX_ACCOUNT_NUMBER", "")
        self.timeout = timeout

    def _fund_account(self, payout) -> dict:
        holder = payout.salon.name
        if payout.upi_id:
            return {
                "account_type": "vpa",
                "vpa": {"address": payout.upi_id},
                "contact": {"name": holder, "type": "vendor", "reference_id": f"salon_{payout.salon_id}"},
            }

        account = payout.bank_account
        if account is None or not account.account_number:
            raise PayoutRailError("Payout has no bank account destination")
        return {
            "account_type": "bank_account",
            "bank_account": {
                "name": account.account_holder_name,
                "ifsc": account.ifsc_code,
                "account_number": account.account_number,
            },
            "contact": {"name": holder, "type": "vendor", "reference_id": f"salon_{payout.salon_id}"},
        }

    def initiate(self, payout) -> RailResult:
        reference = payout.rail_reference or generate_reference(payout.id)
        payload = {
            "account_number": self.account_number,
            "amount": to_paise(payout.net_amount),
            "currency": "INR",
            "mode": rail_mode_for(payout.payout_method),
            "purpose": "payout",
            "fund_account": self._fund_account(payout),
            "queue_if_low_balance": payout.payout_method != "instant_upi",
            "reference_id": reference,
            "narration": f"Grumming payout {payout.id}"[:30],
            "notes": {"payout_id": str(payout.id), "salon_id": str(payout.salon_id)},
        }
        headers = {"X-Payout-Idempotency": reference}

        try:
            r = requests.post(
                f"{self.base_url}/payouts",
                auth=self.auth,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PayoutRailError(f"RazorpayX unreachable: {e}") from e

        data = r.json() if r.content else {}
        if r.status_code < 200 or r.status_code >= 300:
            err = data.get("error") or {}
            raise PayoutRailError(err.get("description") or f"RazorpayX payout failed: {data}")

        return RailResult(
            reference=reference,
            rail_payout_id=str(data.get("id") or ""),
            status=str(data.get("status") or "").lower(),
            raw=data,
        )

    def fetch_status(self, payout) -> str:
        if not payout.rail_payout_id:
            return ""
        try:
            r = requests.get(f"{self.base_url}/payouts/{payout.rail_payout_id}", auth=self.auth,
                             timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("RazorpayX status check for payout %s failed: %s", payout.id, e)
            return ""
        if r.status_code != 200:
            return ""
        return str((r.json() or {}).get("status") or "").lower()


def get_payout_rail() -> PayoutRail:
    return import_string(settings.PAYOUT_RAIL_BACKEND)()