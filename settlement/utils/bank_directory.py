# settlement/utils/bank_directory.py

"""
Bank branch directory lookup (IFSC -> bank/branch display metadata).

Only ever used for display: an unavailable directory degrades to "unverified
display name" and never blocks a bank account or payout.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

import requests
from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

IFSC_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")


def is_valid_ifsc(code: str) -> bool:
    return bool(IFSC_RE.match((code or "").strip().upper()))


@dataclass(frozen=True)
class BankBranch:
    ifsc: str
    bank_name: str
    branch: str = ""
    city: str = ""
    state: str = ""


class BankDirectory:
    def resolve(self, ifsc: str) -> Optional[BankBranch]:
        """Return branch details, or None when unknown/invalid/unavailable."""
        raise NotImplementedError


class RazorpayIfscDirectory(BankDirectory):
    def __init__(self, base_url: str | None = None, timeout: int = 10):
        self.base_url = (base_url or getattr(settings, "IFSC_DIRECTORY_URL", "https://ifsc.razorpay.com")).rstrip("/")
        self.timeout = timeout

    def resolve(self, ifsc: str) -> Optional[BankBranch]:
        code = (ifsc or "").strip().upper()
        if not is_valid_ifsc(code):
            return None

        try:
            r = requests.get(f"{self.base_url}/{code}", timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("IFSC lookup for %s unavailable: %s", code, e)
            return None

        if r.status_code == 404:
            return None
        if r.status_code != 200:
            logger.warning("IFSC lookup for %s returned HTTP %s", code, r.status_code)
            return None

        try:
            data = r.json()
        except ValueError:
            logger.warning("IFSC lookup for %s returned a non-JSON body", code)
            return None

        return BankBranch(
            ifsc=data.get("IFSC") or code,
            bank_name=data.get("BANK") or "",
            branch=data.get("BRANCH") or "",
            city=data.get("CITY") or "",
            state=data.get("STATE") or "",
        )


def get_bank_directory() -> BankDirectory:
    return import_string(settings.BANK_DIRECTORY_BACKEND)()
