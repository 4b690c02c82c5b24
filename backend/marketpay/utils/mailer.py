from __future__ import annotations

import requests


class Mailer:
    """Transactional email over an HTTP API (Brevo-compatible payload)."""

    def __init__(self, api_url: str, api_key: str, sender: str, timeout: float = 10.0):
        self.api_url = api_url
        self.api_key = (api_key or "").strip()
        self.sender = sender
        self.timeout = float(timeout)

    @classmethod
    def from_config(cls, cfg) -> "Mailer":
        return cls(
            api_url=cfg.get("MAIL_API_URL", ""),
            api_key=cfg.get("MAIL_API_KEY", ""),
            sender=cfg.get("MAIL_FROM", ""),
            timeout=float(cfg.get("MAIL_TIMEOUT_SECONDS", 10)),
        )

    def send(self, to: str, subject: str, body_html: str) -> tuple[bool, str]:
        if not self.api_key:
            return False, "MAIL_API_KEY not set"
        if not (to or "").strip():
            return False, "missing recipient"

        payload = {
            "sender": {"email": self.sender},
            "to": [{"email": to.strip()}],
            "subject": subject or "",
            "htmlContent": body_html or "",
        }
        headers = {"api-key": self.api_key, "Content-Type": "application/json"}
        try:
            r = requests.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            return False, f"mail_exception:{e}"
        if 200 <= r.status_code < 300:
            return True, "sent"
        return False, f"mail_http_{r.status_code}"
