"""Refund requests, admin decisions and gateway refund reconciliation."""
from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from marketpay.config import SettlementPolicy
from marketpay.errors import (
    Forbidden,
    GatewayError,
    InvalidTransactionState,
    NotFound,
    RefundIneligible,
    Result,
    ValidationError,
    returns_result,
)
from marketpay.extensions import db
from marketpay.models import Order, OrderItem, Transaction, User
from marketpay.utils.balances import clawback_pending, record_txn
from marketpay.utils.notify import notify_admins, notify_user
from marketpay.utils.references import clawback_reference
from marketpay.utils.settlement import to_money
from marketpay.utils.transitions import compare_and_set

REASON_MIN = 10
REASON_MAX = 500


def _now():
    return datetime.utcnow()


def require_admin(user_id: int) -> User:
    user = db.session.get(User, int(user_id)) if user_id is not None else None
    if not user or not user.is_admin:
        raise Forbidden("Admin access required")
    return user


class RefundService:
    def __init__(self, gateway, policy: SettlementPolicy):
        self.gateway = gateway
        self.policy = policy

    def _get(self, transaction_id: int) -> Transaction:
        txn = db.session.get(Transaction, int(transaction_id))
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    @returns_result
    def request_refund(self, transaction_id: int, actor_id: int, reason: str) -> Result:
        txn = self._get(transaction_id)
        if int(txn.user_id) != int(actor_id):
            raise Forbidden("You can only request refunds for your own transactions")

        reason = (reason or "").strip()
        if not (REASON_MIN <= len(reason) <= REASON_MAX):
            raise ValidationError(f"Reason must be between {REASON_MIN} and {REASON_MAX} characters")
        if txn.kind != "order_payment":
            raise RefundIneligible("Only order payments can be refunded")
        if txn.has_refund_request:
            raise RefundIneligible("Refund request already exists for this transaction")
        if txn.status != "completed":
            raise InvalidTransactionState("Only completed transactions can be refunded", state=txn.status)

        now = _now()
        if now - txn.transaction_date > timedelta(days=self.policy.refund_window_days):
            raise RefundIneligible(f"Refunds must be requested within {self.policy.refund_window_days} days of payment")

        won = compare_and_set(
            Transaction,
            txn.id,
            expected={"status": "completed", "refund_requested_at": None},
            values={
                "status": "refund",
                "refund_status": "pending",
                "refund_reason": reason,
                "refund_requested_by": int(actor_id),
                "refund_requested_at": now,
                "updated_at": now,
            },
        )
        if not won:
            db.session.refresh(txn)
            raise InvalidTransactionState(state=txn.status)

        txn.add_history("Refund requested", actor_id, reason)
        db.session.commit()
        current_app.logger.info("refund requested txn_id=%s user_id=%s", txn.id, actor_id)

        notify_user(
            actor_id,
            "Refund requested",
            f"Your refund request for ₦{to_money(txn.amount)} (Transaction ID: {txn.id}) has been received.",
            kind="refund",
            meta={"transaction_id": txn.id},
        )
        notify_admins(
            "New refund request",
            f"User #{actor_id} requested a refund of ₦{to_money(txn.amount)} for transaction #{txn.id}.",
            meta={"transaction_id": txn.id},
        )
        return Result.success("Refund request submitted", 201, transaction_id=txn.id, refund_status="pending")

    @returns_result
    def refund_status(self, transaction_id: int, actor_id: int) -> Result:
        txn = self._get(transaction_id)
        actor = db.session.get(User, int(actor_id))
        if int(txn.user_id) != int(actor_id) and not (actor and actor.is_admin):
            raise Forbidden("You can only view your own transactions")
        return Result.success("Refund status fetched", refund=txn.refund_dict())

    @returns_result
    def refund_history(self, transaction_id: int, admin_id: int) -> Result:
        require_admin(admin_id)
        txn = self._get(transaction_id)
        return Result.success(
            "Refund history fetched",
            transaction_id=txn.id,
            refund_history=[h.to_dict() for h in txn.refund_history],
        )

    @returns_result
    def decide_refund(self, transaction_id: int, admin_id: int, action: str, notes: str = "") -> Result:
        action = (action or "").strip().lower()
        if action not in ("approve", "reject"):
            raise ValidationError("action must be approve or reject")
        require_admin(admin_id)
        txn = self._get(transaction_id)
        notes = (notes or "").strip()[:500]

        if txn.status != "refund":
            raise InvalidTransactionState("This transaction is not marked for refund", state=txn.status)
        if txn.refund_status != "pending":
            raise InvalidTransactionState(f"Refund has already been {txn.refund_status}", state=txn.refund_status)

        now = _now()
        if action == "approve":
            order = db.session.get(Order, int(txn.order_id)) if txn.order_id else None
            if not order:
                raise NotFound("Order not found for this transaction")
            if now - order.created_at > timedelta(days=self.policy.refund_window_days):
                raise RefundIneligible("Order is too old to be refunded")

        decided = "approved" if action == "approve" else "rejected"
        won = compare_and_set(
            Transaction,
            txn.id,
            expected={"status": "refund", "refund_status": "pending"},
            values={"refund_status": decided, "refund_admin_notes": notes or None, "updated_at": now},
        )
        if not won:
            db.session.refresh(txn)
            raise InvalidTransactionState(f"Refund has already been {txn.refund_status}", state=txn.refund_status)

        txn.add_history(f"Refund {decided}", admin_id, notes)
        db.session.commit()
        current_app.logger.info("refund %s txn_id=%s admin_id=%s", decided, txn.id, admin_id)

        if action == "reject":
            notify_user(
                txn.user_id,
                "Refund rejected",
                f"Your refund request for ₦{to_money(txn.amount)} (Transaction ID: {txn.id}) has been rejected.",
                kind="refund",
                meta={"transaction_id": txn.id},
            )
            return Result.success("Refund rejected successfully", transaction_id=txn.id, refund_status="rejected")

        notify_user(
            txn.user_id,
            "Refund approved",
            f"Your refund of ₦{to_money(txn.amount)} (Transaction ID: {txn.id}) has been approved and will be processed shortly.",
            kind="refund",
            meta={"transaction_id": txn.id},
        )
        return self._process(txn, admin_id)

    @returns_result
    def retry_refund(self, transaction_id: int, admin_id: int) -> Result:
        require_admin(admin_id)
        txn = self._get(transaction_id)
        if txn.status != "refund" or txn.refund_status != "approved":
            raise InvalidTransactionState(
                "Only approved refunds whose gateway refund failed can be retried",
                state=txn.refund_status or txn.status,
            )
        txn.add_history("Refund retry", admin_id, "")
        db.session.commit()
        return self._process(txn, admin_id)

    def _claw_back(self, order: Order, txn: Transaction, admin_id: int) -> list:
        now = _now()
        clawed = []
        for item in order.items:
            if item.clawed_back_at is not None:
                continue
            # Stamp first so a concurrent run cannot debit the same line
            if not compare_and_set(OrderItem, item.id, expected={"clawed_back_at": None}, values={"clawed_back_at": now}):
                continue
            amount = to_money(item.seller_earnings)
            if not clawback_pending(item.seller_id, amount):
                compare_and_set(OrderItem, item.id, expected={"clawed_back_at": now}, values={"clawed_back_at": None})
                txn.add_history(
                    "Clawback skipped",
                    admin_id,
                    f"Seller #{item.seller_id} pending balance below ₦{amount} for item #{item.id}",
                )
                continue
            record_txn(
                user_id=item.seller_id,
                kind="refund_clawback",
                direction="debit",
                amount=amount,
                reference=clawback_reference(item.id),
                description=f"Refund clawback for order #{order.id}",
                order_id=order.id,
            )
            clawed.append((int(item.seller_id), amount, item.product_id))
        return clawed

    def _process(self, txn: Transaction, admin_id: int) -> Result:
        order = db.session.get(Order, int(txn.order_id))
        clawed = self._claw_back(order, txn, admin_id)
        db.session.commit()

        for seller_id, amount, product_id in clawed:
            notify_user(
                seller_id,
                "Sale refunded",
                f"₦{amount} for product #{product_id} was deducted from your pending balance after a refund.",
                kind="refund",
                meta={"order_id": order.id, "transaction_id": txn.id},
            )

        try:
            refund = self.gateway.process_refund(txn.reference_id, txn.amount)
        except GatewayError as e:
            current_app.logger.error("gateway refund failed txn_id=%s: %s", txn.id, e.message)
            txn.add_history("Refund processing failed", admin_id, e.message)
            db.session.commit()
            raise GatewayError(
                f"Refund approved but the gateway refund failed: {e.message}",
                transaction_id=txn.id,
                refund_status="approved",
                error_detail=e.message,
            ) from e

        now = _now()
        won = compare_and_set(
            Transaction,
            txn.id,
            expected={"status": "refund", "refund_status": "approved"},
            values={
                "status": "refunded",
                "refund_status": "processed",
                "gateway_refund_id": str(refund.get("refund_id") or "")[:128],
                "refund_amount": to_money(txn.amount),
                "refund_processed_at": now,
                "refund_processed_by": int(admin_id),
                "updated_at": now,
            },
        )
        if not won:
            db.session.refresh(txn)
            current_app.logger.error("refund for txn_id=%s finalized concurrently (refund_status=%s)", txn.id, txn.refund_status)
            raise InvalidTransactionState(state=txn.refund_status)

        txn.add_history("Refund processed", admin_id, f"Gateway refund {txn.gateway_refund_id}")
        compare_and_set(Order, order.id, expected={"status": "paid"}, values={"status": "refunded", "updated_at": now})
        db.session.commit()
        current_app.logger.info("refund processed txn_id=%s amount=%s", txn.id, txn.refund_amount)

        notify_user(
            txn.user_id,
            "Refund processed",
            f"Your refund of ₦{to_money(txn.amount)} (Transaction ID: {txn.id}) has been sent to your payment method.",
            kind="refund",
            meta={"transaction_id": txn.id},
        )
        return Result.success(
            "Refund approved successfully",
            transaction_id=txn.id,
            refund_status="processed",
            refund_details=txn.refund_details_dict(),
        )
