from __future__ import annotations

import hmac
import hashlib
from decimal import Decimal, ROUND_HALF_UP

import requests

from marketpay.errors import GatewayError, GatewayTimeout, InsufficientGatewayBalance, InvalidRecipient


def to_kobo(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_kobo(kobo) -> Decimal:
    return (Decimal(str(kobo or 0)) / 100).quantize(Decimal("0.0001"))


def verify_signature(secret: str, raw_body: bytes, signature_header: str | None) -> bool:
    if not secret or not signature_header:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(digest, signature_header.strip())


class PaystackGateway:
    """Paystack adapter.

    Amounts in and out are major units (NGN); Paystack works in kobo.
    Every call is bounded by ``timeout``. A timeout raises GatewayTimeout and
    must be treated as an unknown outcome, never as success.
    """

    provider = "paystack"

    def __init__(self, secret_key: str, base_url: str = "https://api.paystack.co", timeout: float = 20.0):
        self.secret_key = (secret_key or "").strip()
        self.base_url = (base_url or "https://api.paystack.co").rstrip("/")
        self.timeout = float(timeout)

    @classmethod
    def from_config(cls, cfg) -> "PaystackGateway":
        return cls(
            secret_key=cfg.get("PAYSTACK_SECRET_KEY", ""),
            base_url=cfg.get("PAYSTACK_BASE_URL", "https://api.paystack.co"),
            timeout=float(cfg.get("PAYSTACK_TIMEOUT_SECONDS", 20)),
        )

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.secret_key}", "Content-Type": "application/json"}

    def _call(self, method: str, path: str, *, json: dict | None = None, params: dict | None = None) -> dict:
        if not self.secret_key:
            raise GatewayError("PAYSTACK_SECRET_KEY not set")
        url = f"{self.base_url}{path}"
        try:
            r = requests.request(method, url, headers=self._headers(), json=json, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise GatewayTimeout(f"Paystack timed out on {path}") from e
        except requests.RequestException as e:
            raise GatewayError(f"Paystack request failed: {e}") from e
        try:
            j = r.json() if r.content else {}
        except ValueError:
            j = {}
        if 200 <= r.status_code < 300 and j.get("status") is True:
            return j.get("data") or {}
        message = j.get("message") or f"HTTP {r.status_code}"
        raise GatewayError(message, http_status=r.status_code)

    def verify_signature(self, raw_body: bytes, signature_header: str | None) -> bool:
        return verify_signature(self.secret_key, raw_body, signature_header)

    def initiate_charge(self, email: str, amount, reference: str, callback_url: str = "") -> dict:
        payload = {"email": email, "amount": to_kobo(amount), "reference": reference}
        if callback_url:
            payload["callback_url"] = callback_url
        data = self._call("POST", "/transaction/initialize", json=payload)
        return {
            "reference": data.get("reference", reference),
            "redirect_url": data.get("authorization_url", ""),
        }

    def verify_charge(self, reference: str) -> dict:
        data = self._call("GET", f"/transaction/verify/{reference}")
        return {
            "status": (data.get("status") or "").strip().lower(),
            "amount_paid": from_kobo(data.get("amount")),
            "reference": data.get("reference", reference),
        }

    def transfer_payout(self, recipient_code: str, amount, note: str, reference: str) -> dict:
        payload = {
            "source": "balance",
            "amount": to_kobo(amount),
            "recipient": recipient_code,
            "reason": note,
            "reference": reference,
        }
        try:
            data = self._call("POST", "/transfer", json=payload)
        except GatewayTimeout:
            raise
        except GatewayError as e:
            low = e.message.lower()
            if "balance" in low and ("insufficient" in low or "not enough" in low):
                raise InsufficientGatewayBalance(e.message) from e
            if "recipient" in low:
                raise InvalidRecipient(e.message) from e
            raise
        return {
            "transfer_id": data.get("transfer_code", ""),
            "status": (data.get("status") or "").strip().lower(),
            "reference": data.get("reference", reference),
        }

    def process_refund(self, reference: str, amount) -> dict:
        data = self._call("POST", "/refund", json={"transaction": reference, "amount": to_kobo(amount)})
        return {"refund_id": str(data.get("id", "")), "status": (data.get("status") or "").strip().lower()}

    def create_recipient(self, account_number: str, bank_code: str) -> dict:
        payload = {"type": "nuban", "account_number": account_number, "bank_code": bank_code, "currency": "NGN"}
        try:
            data = self._call("POST", "/transferrecipient", json=payload)
        except GatewayTimeout:
            raise
        except GatewayError as e:
            raise InvalidRecipient(e.message) from e
        details = data.get("details") or {}
        return {
            "recipient_code": data.get("recipient_code", ""),
            "account_name": details.get("account_name", ""),
            "bank_name": details.get("bank_name", ""),
        }
