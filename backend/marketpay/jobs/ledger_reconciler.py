from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from marketpay.extensions import db
from marketpay.models import AuditLog, Order, OrderItem, Product, Transaction, User
from marketpay.utils.settlement import to_money


def _sum_txns(user_id: int, kind: str, statuses=("completed",)) -> Decimal:
    total = db.session.query(func.coalesce(func.sum(Transaction.amount), 0)).filter(
        Transaction.user_id == int(user_id),
        Transaction.kind == kind,
        Transaction.status.in_(list(statuses)),
    ).scalar()
    return to_money(total or 0)


def _sold_earnings(user_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(OrderItem.seller_earnings), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .filter(
            OrderItem.seller_id == int(user_id),
            Order.status.in_(["paid", "refunded"]),
            Product.is_sold.is_(True),
        )
        .scalar()
    )
    return to_money(total or 0)


def expected_holdings(user_id: int) -> Decimal:
    """What pending + balance should add up to from the ledger's point of view."""
    return (
        _sold_earnings(user_id)
        + _sum_txns(user_id, "referral_reward")
        - _sum_txns(user_id, "refund_clawback")
        - _sum_txns(user_id, "withdrawal", statuses=("pending", "completed"))
    )


def reconcile_ledger(*, limit: int = 500, tolerance: Decimal = Decimal("0.01")) -> dict:
    """Detect balance anomalies (ledger vs stored balances).

    This does NOT auto-correct balances. It logs anomalies into AuditLog so they are visible.
    """
    checked = 0
    anomalies = 0
    now = datetime.utcnow()

    users = User.query.order_by(User.id.asc()).limit(int(limit)).all()

    for u in users:
        checked += 1
        pending = to_money(u.pending_balance)
        available = to_money(u.balance)
        computed = expected_holdings(u.id)

        issues = []
        if abs(computed - (pending + available)) > tolerance:
            issues.append("ledger_mismatch")
        if pending < 0:
            issues.append("negative_pending_balance")
        if available < 0:
            issues.append("negative_balance")
        if not issues:
            continue

        anomalies += 1
        meta = {
            "issues": issues,
            "user_id": int(u.id),
            "computed_holdings": str(computed),
            "pending_balance": str(pending),
            "balance": str(available),
        }
        current_app.logger.warning("ledger anomaly user_id=%s issues=%s", u.id, ",".join(issues))
        AuditLog.record("ledger_anomaly", "user", u.id, at=now, **meta)

    db.session.commit()
    return {"ok": True, "checked": checked, "anomalies": anomalies, "ts": now.isoformat()}
