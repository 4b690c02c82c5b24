from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from marketpay.config import SettlementPolicy
from marketpay.extensions import db
from marketpay.models import Product, Transaction


def cancel_expired_transactions() -> dict:
    """Cancel pending payment attempts past their expiry. Orders and products are left alone."""
    now = datetime.utcnow()
    res = db.session.execute(
        update(Transaction)
        .where(
            Transaction.kind == "order_payment",
            Transaction.status == "pending",
            Transaction.expires_at.isnot(None),
            Transaction.expires_at <= now,
        )
        .values(status="cancelled", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    cancelled = int(res.rowcount or 0)
    if cancelled:
        current_app.logger.info("cancelled %s expired payment attempts", cancelled)
    return {"ok": True, "cancelled": cancelled, "ts": now.isoformat()}


def unreserve_expired_products(policy: SettlementPolicy) -> dict:
    now = datetime.utcnow()
    cutoff = now - timedelta(minutes=policy.reservation_minutes)
    res = db.session.execute(
        update(Product)
        .where(
            Product.is_reserved.is_(True),
            Product.is_sold.is_(False),
            Product.reserved_at <= cutoff,
        )
        .values(is_reserved=False, reserved_at=None, reserved_order_id=None)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    released = int(res.rowcount or 0)
    if released:
        current_app.logger.info("released %s expired product reservations", released)
    return {"ok": True, "unreserved": released, "ts": now.isoformat()}
