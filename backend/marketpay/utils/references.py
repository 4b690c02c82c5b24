from __future__ import annotations

import secrets
from dataclasses import dataclass


ORDER_SCHEMES = ("order", "txn")


@dataclass(frozen=True)
class PaymentReference:
    """Gateway reference for one checkout payment attempt.

    Rendered as ``order_<orderId>`` for the first attempt and
    ``order_<orderId>_<attempt>`` after that. ``txn_<orderId>`` is accepted
    when parsing for references issued by older clients.
    """

    order_id: int
    attempt: int = 0
    scheme: str = "order"

    def __str__(self) -> str:
        if self.attempt:
            return f"{self.scheme}_{int(self.order_id)}_{int(self.attempt)}"
        return f"{self.scheme}_{int(self.order_id)}"

    @classmethod
    def parse(cls, raw: str) -> "PaymentReference | None":
        parts = (raw or "").strip().split("_")
        if len(parts) not in (2, 3) or parts[0] not in ORDER_SCHEMES:
            return None
        if not all(p.isdigit() for p in parts[1:]):
            return None
        attempt = int(parts[2]) if len(parts) == 3 else 0
        return cls(order_id=int(parts[1]), attempt=attempt, scheme=parts[0])


def withdrawal_reference() -> str:
    return f"WD_{secrets.token_hex(8)}"


def escrow_release_reference(item_id: int) -> str:
    return f"ESC_{int(item_id)}"


def referral_reward_reference(item_id: int) -> str:
    return f"REF_{int(item_id)}"


def clawback_reference(item_id: int) -> str:
    return f"CB_{int(item_id)}"
