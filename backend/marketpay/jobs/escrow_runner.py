from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from marketpay.config import SettlementPolicy
from marketpay.extensions import db
from marketpay.models import Order, OrderItem, Product, Transaction, User
from marketpay.utils.balances import credit_balance, record_txn, release_pending
from marketpay.utils.notify import notify_user
from marketpay.utils.references import escrow_release_reference, referral_reward_reference
from marketpay.utils.settlement import referral_reward, to_money
from marketpay.utils.transitions import compare_and_set


def _now():
    return datetime.utcnow()


def _due_payments(cutoff: datetime, limit: int):
    # settled payments stay completed/paid, so only pick those with a line left to release
    releasable = (
        db.session.query(OrderItem.id)
        .join(Product, Product.id == OrderItem.product_id)
        .filter(
            OrderItem.order_id == Transaction.order_id,
            OrderItem.clawed_back_at.is_(None),
            Product.is_sold.is_(True),
            Product.has_settled.is_(False),
        )
        .exists()
    )
    return (
        Transaction.query.join(Order, Order.id == Transaction.order_id)
        .filter(
            Transaction.kind == "order_payment",
            Transaction.transaction_type == "credit",
            Transaction.status == "completed",
            Transaction.transaction_date <= cutoff,
            Order.status == "paid",
            releasable,
        )
        .order_by(Transaction.id.asc())
        .limit(int(limit))
        .all()
    )


def _release_item(item, order: Order, buyer: User | None, policy: SettlementPolicy) -> tuple[bool, str, list]:
    """Settle one sold line. Returns (released, reason, notices)."""
    earnings = to_money(item.seller_earnings)
    if item.clawed_back_at is not None:
        return False, "clawed_back", []

    seller = db.session.get(User, int(item.seller_id))
    if not seller or to_money(seller.pending_balance) < earnings:
        return False, "insufficient_pending", []

    if not compare_and_set(Product, item.product_id, expected={"has_settled": False}, values={"has_settled": True}):
        return False, "already_settled", []
    if not release_pending(seller.id, earnings):
        db.session.rollback()
        return False, "insufficient_pending", []

    record_txn(
        user_id=seller.id,
        kind="escrow_release",
        direction="credit",
        amount=earnings,
        reference=escrow_release_reference(item.id),
        description=f"Escrow release for order #{order.id}",
        order_id=order.id,
    )
    notices = [(seller.id, "Funds available", f"₦{earnings} from order #{order.id} is now available to withdraw.")]

    reward = referral_reward(item.platform_revenue, policy.referral_reward_rate)
    referrer_id = buyer.referred_by_id if buyer else None
    if referrer_id and reward > 0:
        credit_balance(referrer_id, reward)
        record_txn(
            user_id=referrer_id,
            kind="referral_reward",
            direction="credit",
            amount=reward,
            reference=referral_reward_reference(item.id),
            description=f"Referral reward for order #{order.id}",
            order_id=order.id,
        )
        notices.append((referrer_id, "Referral reward", f"You earned ₦{reward} from a purchase by someone you referred."))

    db.session.commit()
    return True, "", notices


def run_escrow_release(policy: SettlementPolicy, *, limit: int = 500) -> dict:
    """Move seller earnings from pending to available once the holding period is over.

    Rules:
      - Only completed order payments whose order is still paid.
      - Each sold, unsettled item is released once (has_settled flips in the same commit).
      - The buyer's referrer gets the referral reward on the platform's revenue for the item.
      - A failing item is rolled back and counted; the run continues.
    """
    processed = 0
    released = 0
    skipped = 0
    errors = 0
    now = _now()

    payments = _due_payments(now - timedelta(days=policy.holding_days), limit)

    for txn in payments:
        order = db.session.get(Order, int(txn.order_id))
        buyer = db.session.get(User, int(order.buyer_id))
        for item in order.items:
            product = item.product
            if not product or not product.is_sold or product.has_settled:
                continue
            processed += 1
            try:
                ok, reason, notices = _release_item(item, order, buyer, policy)
            except Exception:
                db.session.rollback()
                errors += 1
                current_app.logger.exception("escrow release failed order_id=%s item_id=%s", order.id, item.id)
                continue

            if not ok:
                skipped += 1
                current_app.logger.info("escrow release skipped item_id=%s: %s", item.id, reason)
                continue

            released += 1
            for user_id, title, body in notices:
                notify_user(user_id, title, body, kind="account", meta={"order_id": order.id})

    summary = {
        "ok": True,
        "processed": processed,
        "released": released,
        "skipped": skipped,
        "errors": errors,
        "ts": now.isoformat(),
    }
    current_app.logger.info("escrow release run: %s", summary)
    return summary
