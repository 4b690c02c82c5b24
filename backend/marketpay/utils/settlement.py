"""Fee, commission and seller earnings split for a sale.

Pure functions. The split is computed once at checkout and persisted on the
Transaction and on each OrderItem; later steps read the stored values.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from marketpay.errors import ValidationError

MONEY_PLACES = Decimal("0.0001")

# Default platform rates (overridable through config)
RATES = {
    "commission": Decimal("0.05"),
    "gateway_fee": Decimal("0.015"),
    "gateway_flat_fee": Decimal("100"),
    "referral_reward": Decimal("0.01"),
}


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0").quantize(MONEY_PLACES)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def round_half_up(value: Decimal) -> Decimal:
    """Round to a whole currency unit, halves away from zero."""
    return Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Settlement:
    amount: Decimal
    total_amount: Decimal
    gateway_charges: Decimal
    seller_earnings: Decimal
    revenue: Decimal
    commission_rate: Decimal

    def to_dict(self) -> dict:
        return {
            "amount": float(self.amount),
            "total_amount": float(self.total_amount),
            "gateway_charges": float(self.gateway_charges),
            "seller_earnings": float(self.seller_earnings),
            "revenue": float(self.revenue),
            "commission_rate": float(self.commission_rate),
        }


def compute_settlement(
    amount,
    *,
    commission_rate=RATES["commission"],
    gateway_rate=RATES["gateway_fee"],
    gateway_flat_fee=RATES["gateway_flat_fee"],
) -> Settlement:
    a = to_money(amount)
    if a <= 0:
        raise ValidationError("amount must be positive")
    rate = Decimal(str(commission_rate))

    gateway_charges = round_half_up(a * Decimal(str(gateway_rate)) + Decimal(str(gateway_flat_fee)))
    seller_earnings = to_money(a * (Decimal("1") - rate))
    # Revenue is the remainder so earnings + revenue == amount exactly
    revenue = a - seller_earnings

    return Settlement(
        amount=a,
        total_amount=a + gateway_charges,
        gateway_charges=gateway_charges,
        seller_earnings=seller_earnings,
        revenue=revenue,
        commission_rate=rate,
    )


def split_line(price, quantity: int, *, commission_rate=RATES["commission"]) -> tuple[Decimal, Decimal]:
    """(seller_earnings, platform_revenue) for one order line."""
    gross = to_money(price) * int(quantity or 1)
    earnings = to_money(gross * (Decimal("1") - Decimal(str(commission_rate))))
    return earnings, gross - earnings


def referral_reward(revenue, rate=RATES["referral_reward"]) -> Decimal:
    return round_half_up(to_money(revenue) * Decimal(str(rate)))
