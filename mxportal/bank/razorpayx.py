from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from flask import current_app

logger = logging.getLogger(__name__)


class RazorpayXError(Exception):
    """A Razorpay X call failed or returned an error status."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class RazorpayXClient:
    """Minimal client for the Razorpay X contacts, fund accounts and payouts APIs."""

    def __init__(self, key_id: str, key_secret: str, account_number: str,
                 base_url: str = "https://api.razorpay.com/v1", timeout: int = 15) -> None:
        self.auth = (key_id, key_secret)
        self.account_number = account_number.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls) -> Optional["RazorpayXClient"]:
        cfg = current_app.config
        key_id = cfg.get("RAZORPAY_KEY_ID")
        key_secret = cfg.get("RAZORPAY_KEY_SECRET")
        account_number = (cfg.get("RAZORPAY_X_ACCOUNT_NUMBER") or "").strip()
        if not (key_id and key_secret and account_number):
            return None
        return cls(
            key_id,
            key_secret,
            account_number,
            base_url=cfg.get("RAZORPAY_API_BASE") or "https://api.razorpay.com/v1",
            timeout=cfg.get("RAZORPAY_TIMEOUT_SECONDS", 15),
        )

    def _request(self, method: str, path: str, payload: Dict[str, Any] | None = None,
                 headers: Dict[str, str] | None = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(method, url, json=payload, auth=self.auth,
                                    headers=headers or {}, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.exception("Razorpay X %s %s failed: %s", method, path, exc)
            raise RazorpayXError(str(exc)) from exc

        if resp.status_code >= 400:
            logger.warning("Razorpay X %s %s error %s: %s", method, path, resp.status_code, resp.text)
            raise RazorpayXError(f"Razorpay X returned {resp.status_code}", resp.status_code, resp.text)
        return resp.json()

    def create_contact(self, name: str, email: str, phone: str, reference_id: str) -> Dict[str, Any]:
        return self._request("POST", "/contacts", {
            "name": name[:50],
            "email": email[:255],
            "contact": phone,
            "type": "vendor",
            "reference_id": reference_id,
        })

    def create_bank_fund_account(self, contact_id: str, name: str, ifsc: str, account_number: str) -> Dict[str, Any]:
        return self._request("POST", "/fund_accounts", {
            "contact_id": contact_id,
            "account_type": "bank_account",
            "bank_account": {
                "name": name[:100],
                "ifsc": ifsc.strip()[:11],
                "account_number": "".join(ch for ch in account_number if ch.isdigit()),
            },
        })

    def create_vpa_fund_account(self, contact_id: str, vpa: str) -> Dict[str, Any]:
        return self._request("POST", "/fund_accounts", {
            "contact_id": contact_id,
            "account_type": "vpa",
            "vpa": {"address": vpa.strip().lower()},
        })

    def create_payout(self, fund_account_id: str, amount_paise: int, mode: str,
                      reference_id: str, idempotency_key: str, notes: Dict[str, str] | None = None) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/payouts",
            {
                "account_number": self.account_number,
                "fund_account_id": fund_account_id,
                "amount": amount_paise,
                "currency": "INR",
                "mode": mode,
                "purpose": "refund",
                "queue_if_low_balance": True,
                "reference_id": reference_id[:40],
                "narration": "Verify",
                "notes": notes or {},
            },
            headers={"X-Payout-Idempotency": idempotency_key},
        )

    def fetch_payout(self, payout_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payouts/{payout_id}")
