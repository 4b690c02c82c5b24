"""Checkout, payment initiation and payment confirmation.

Client verification and the ``charge.success`` webhook both end in
``_complete``, which is safe to run any number of times for one reference:
the pending -> completed compare-and-set has exactly one winner and only the
winner credits sellers.
"""
from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from marketpay.config import SettlementPolicy
from marketpay.errors import (
    Forbidden,
    GatewayError,
    InvalidTransactionState,
    NotFound,
    PaymentAmountMismatch,
    Result,
    Unauthorized,
    ValidationError,
    returns_result,
)
from marketpay.extensions import db
from marketpay.models import AuditLog, Order, OrderItem, Product, Transaction, User, WebhookEvent
from marketpay.models.transaction import PAID_STATUSES
from marketpay.utils.balances import credit_pending
from marketpay.utils.notify import notify_user
from marketpay.utils.paystack_client import from_kobo
from marketpay.utils.references import PaymentReference
from marketpay.utils.settlement import compute_settlement, split_line, to_money
from marketpay.utils.transitions import compare_and_set

TRANSFER_EVENTS = ("transfer.success", "transfer.failed", "transfer.reversed")


def _now():
    return datetime.utcnow()


class PaymentService:
    def __init__(self, gateway, policy: SettlementPolicy, *, callback_url: str = "", withdrawals=None):
        self.gateway = gateway
        self.policy = policy
        self.callback_url = callback_url
        self.withdrawals = withdrawals

    # -----------------
    # Checkout
    # -----------------
    @returns_result
    def checkout(self, buyer_id: int, product_ids, delivery_type: str = "pickup", delivery_address: str = "") -> Result:
        if not isinstance(product_ids, (list, tuple)) or not product_ids:
            raise ValidationError("product_ids must be a non-empty list")
        try:
            ids = sorted({int(p) for p in product_ids})
        except (TypeError, ValueError):
            raise ValidationError("product_ids must be integers")

        buyer = db.session.get(User, int(buyer_id))
        if not buyer:
            raise NotFound("Buyer not found")

        products = Product.query.filter(Product.id.in_(ids)).all()
        if len(products) != len(ids):
            raise NotFound("Product not found")

        now = _now()
        order = Order(
            buyer_id=buyer.id,
            status="pending",
            delivery_type=(delivery_type or "pickup").strip().lower()[:32],
            delivery_address=(delivery_address or "").strip()[:255] or None,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        db.session.flush()

        total = to_money(0)
        for p in products:
            if int(p.seller_id) == int(buyer.id):
                raise ValidationError("You cannot buy your own product", product_id=p.id)
            if not p.is_approved or p.is_sold or to_money(p.price) <= 0:
                raise ValidationError("Product is not available", product_id=p.id)
            if p.is_reserved and not self._reservation_lapsed(p, now):
                raise ValidationError("Product is reserved by another checkout", product_id=p.id)
            earnings, revenue = split_line(p.price, 1, commission_rate=self.policy.commission_rate)
            db.session.add(
                OrderItem(
                    order_id=order.id,
                    product_id=p.id,
                    seller_id=p.seller_id,
                    quantity=1,
                    price=to_money(p.price),
                    seller_earnings=earnings,
                    platform_revenue=revenue,
                )
            )
            total += to_money(p.price)

        order.total_price = total
        db.session.commit()
        current_app.logger.info("checkout order_id=%s buyer_id=%s total=%s", order.id, buyer.id, total)
        return Result.success("Order created", 201, order=order.to_dict())

    def _reservation_lapsed(self, product: Product, now: datetime) -> bool:
        if not product.reserved_at:
            return True
        return product.reserved_at <= now - timedelta(minutes=self.policy.reservation_minutes)

    # -----------------
    # Initiation
    # -----------------
    @returns_result
    def initiate_order_payment(self, order_id: int, actor_id: int) -> Result:
        order = db.session.get(Order, int(order_id))
        if not order:
            raise NotFound("Order not found")
        if int(order.buyer_id) != int(actor_id):
            raise Forbidden("You can only pay for your own orders")
        if order.status in ("paid", "refunded"):
            raise InvalidTransactionState("Order has already been paid", state=order.status)

        now = _now()
        live = (
            Transaction.query.filter_by(order_id=order.id, kind="order_payment", status="pending")
            .filter(Transaction.expires_at > now)
            .order_by(Transaction.id.desc())
            .first()
        )
        if live:
            return Result.success(
                "Payment already initialized",
                reference=live.reference_id,
                redirect_url=live.authorization_url or "",
                amount=float(live.total_amount),
                expires_at=live.expires_at.isoformat(),
            )

        # An expired attempt must not complete after its replacement is issued
        stale = Transaction.query.filter_by(order_id=order.id, kind="order_payment", status="pending").all()
        for old in stale:
            compare_and_set(Transaction, old.id, expected={"status": "pending"}, values={"status": "cancelled", "updated_at": now})

        buyer = db.session.get(User, int(actor_id))
        attempt = Transaction.query.filter_by(order_id=order.id, kind="order_payment").count()
        ref = str(PaymentReference(order_id=order.id, attempt=attempt))

        cutoff = now - timedelta(minutes=self.policy.reservation_minutes)
        for item in order.items:
            held = db.session.execute(
                update(Product)
                .where(
                    Product.id == item.product_id,
                    Product.is_sold.is_(False),
                    or_(
                        Product.is_reserved.is_(False),
                        Product.reserved_order_id == order.id,
                        Product.reserved_at <= cutoff,
                    ),
                )
                .values(is_reserved=True, reserved_at=now, reserved_order_id=order.id)
            ).rowcount
            if not held:
                raise InvalidTransactionState("Product is no longer available", state="unavailable", product_id=item.product_id)

        s = compute_settlement(
            order.total_price,
            commission_rate=self.policy.commission_rate,
            gateway_rate=self.policy.gateway_fee_rate,
            gateway_flat_fee=self.policy.gateway_flat_fee,
        )
        txn = Transaction(
            reference_id=ref,
            order_id=order.id,
            user_id=buyer.id,
            kind="order_payment",
            transaction_type="credit",
            status="pending",
            amount=s.amount,
            total_amount=s.total_amount,
            charges=s.gateway_charges,
            commission_rate=s.commission_rate,
            platform_commission=s.revenue,
            seller_earnings=s.seller_earnings,
            net_revenue=s.revenue,
            description=f"Payment for order #{int(order.id)}",
            transaction_date=now,
            expires_at=now + timedelta(minutes=self.policy.payment_expiry_minutes),
            created_at=now,
            updated_at=now,
        )
        db.session.add(txn)
        if order.status == "failed":
            order.status = "pending"
            order.updated_at = now
        db.session.commit()

        try:
            init = self.gateway.initiate_charge(buyer.email, s.total_amount, ref, callback_url=self.callback_url)
        except GatewayError as e:
            current_app.logger.warning("initiate_charge failed ref=%s: %s", ref, e.message)
            compare_and_set(Transaction, txn.id, expected={"status": "pending"}, values={"status": "failed", "updated_at": _now()})
            self._release_reservations(order.id)
            db.session.commit()
            raise

        txn.authorization_url = (init.get("redirect_url") or "")[:512]
        txn.updated_at = _now()
        db.session.commit()
        current_app.logger.info("payment initialized ref=%s total=%s", ref, s.total_amount)
        return Result.success(
            "Payment initialized",
            reference=ref,
            redirect_url=txn.authorization_url,
            amount=float(s.total_amount),
            expires_at=txn.expires_at.isoformat(),
        )

    def _release_reservations(self, order_id: int) -> None:
        db.session.execute(
            update(Product)
            .where(Product.reserved_order_id == int(order_id), Product.is_sold.is_(False))
            .values(is_reserved=False, reserved_at=None, reserved_order_id=None)
        )

    # -----------------
    # Confirmation
    # -----------------
    def _payment_by_reference(self, reference: str) -> Transaction:
        txn = Transaction.query.filter_by(reference_id=(reference or "").strip(), kind="order_payment").first()
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    @returns_result
    def verify_payment(self, reference: str, actor_id: int) -> Result:
        txn = self._payment_by_reference(reference)
        if int(txn.user_id) != int(actor_id):
            raise Forbidden("You can only verify your own payments")
        if txn.status in PAID_STATUSES:
            return Result.success("Payment already verified", status=txn.status, reference=txn.reference_id)
        if txn.status != "pending":
            raise InvalidTransactionState(state=txn.status)

        charge = self.gateway.verify_charge(txn.reference_id)
        if charge.get("status") != "success":
            return Result.success(
                "Payment not completed",
                status="pending",
                gateway_status=charge.get("status") or "unknown",
                reference=txn.reference_id,
            )
        return self._complete(txn, charge.get("amount_paid"))

    @returns_result
    def complete_payment(self, reference: str, amount_paid) -> Result:
        return self._complete(self._payment_by_reference(reference), amount_paid)

    def _complete(self, txn: Transaction, amount_paid) -> Result:
        if txn.status in PAID_STATUSES:
            return Result.success("Payment already verified", status=txn.status, reference=txn.reference_id)

        paid = to_money(amount_paid)
        if paid != to_money(txn.total_amount):
            current_app.logger.warning(
                "amount mismatch ref=%s expected=%s received=%s", txn.reference_id, txn.total_amount, paid
            )
            AuditLog.record(
                "payment_amount_mismatch",
                "transaction",
                txn.id,
                reference=txn.reference_id,
                expected=str(txn.total_amount),
                received=str(paid),
            )
            db.session.commit()
            raise PaymentAmountMismatch(
                "Amount paid does not match the amount due",
                expected=float(txn.total_amount),
                received=float(paid),
            )

        now = _now()
        won = compare_and_set(
            Transaction,
            txn.id,
            expected={"status": "pending"},
            values={"status": "completed", "transaction_date": now, "updated_at": now},
        )
        if not won:
            db.session.refresh(txn)
            if txn.status in PAID_STATUSES:
                return Result.success("Payment already verified", status=txn.status, reference=txn.reference_id)
            raise InvalidTransactionState(state=txn.status)

        order = db.session.get(Order, int(txn.order_id))
        compare_and_set(
            Order,
            order.id,
            expected={"status": ("pending", "failed")},
            values={"status": "paid", "paid_at": now, "updated_at": now},
        )

        credited = []
        for item in order.items:
            sold = compare_and_set(
                Product,
                item.product_id,
                expected={"is_sold": False},
                values={"is_sold": True, "is_reserved": False, "reserved_at": None, "reserved_order_id": None},
            )
            if not sold:
                current_app.logger.warning("product %s already sold, order %s item %s not credited", item.product_id, order.id, item.id)
                continue
            credit_pending(item.seller_id, item.seller_earnings)
            credited.append((int(item.seller_id), to_money(item.seller_earnings), item.product_id))

        db.session.commit()
        current_app.logger.info("payment completed ref=%s order_id=%s sellers=%s", txn.reference_id, order.id, len(credited))

        for seller_id, earnings, product_id in credited:
            notify_user(
                seller_id,
                "Item sold",
                f"Your product #{product_id} was sold. ₦{earnings} is held in your pending balance.",
                kind="market",
                meta={"reference": txn.reference_id, "order_id": order.id},
            )
        notify_user(
            txn.user_id,
            "Payment successful",
            f"Your payment of ₦{txn.total_amount} for order #{order.id} was received.",
            kind="account",
            meta={"reference": txn.reference_id, "order_id": order.id},
        )
        return Result.success("Payment verified", status="completed", reference=txn.reference_id, order_id=order.id)

    def _fail(self, txn: Transaction) -> Result:
        now = _now()
        if not compare_and_set(Transaction, txn.id, expected={"status": "pending"}, values={"status": "failed", "updated_at": now}):
            db.session.refresh(txn)
            return Result.success("Event ignored", status=txn.status, ignored=True)
        compare_and_set(Order, txn.order_id, expected={"status": "pending"}, values={"status": "failed", "updated_at": now})
        self._release_reservations(txn.order_id)
        db.session.commit()
        current_app.logger.info("payment failed ref=%s", txn.reference_id)
        notify_user(
            txn.user_id,
            "Payment failed",
            f"Your payment for order #{txn.order_id} did not go through.",
            meta={"reference": txn.reference_id, "order_id": txn.order_id},
        )
        return Result.success("Payment marked failed", status="failed", reference=txn.reference_id)

    @returns_result
    def fail_payment(self, reference: str) -> Result:
        return self._fail(self._payment_by_reference(reference))

    # -----------------
    # Webhooks
    # -----------------
    @returns_result
    def handle_gateway_webhook(self, event_type: str, data: dict) -> Result:
        event_type = (event_type or "").strip()
        reference = str((data or {}).get("reference") or "").strip()

        if event_type in TRANSFER_EVENTS:
            if self.withdrawals is None:
                return Result.success("Event ignored", ignored=True)
            return self.withdrawals.handle_transfer_event(event_type, data)

        if event_type not in ("charge.success", "charge.failed") or not reference:
            return Result.success("Event ignored", ignored=True)

        txn = Transaction.query.filter_by(reference_id=reference, kind="order_payment").first()
        if not txn:
            current_app.logger.warning("webhook %s for unknown reference %s", event_type, reference)
            return Result.success("Event ignored", ignored=True)

        if event_type == "charge.failed":
            return self._fail(txn)
        return self._complete(txn, from_kobo(data.get("amount")))

    @returns_result
    def handle_paystack_event(self, raw_body: bytes, signature: str | None) -> Result:
        if not self.gateway.verify_signature(raw_body or b"", signature):
            current_app.logger.warning("paystack webhook rejected: invalid signature")
            AuditLog.record("paystack_webhook_rejected", "webhook", reason="invalid_signature")
            db.session.commit()
            raise Unauthorized("Invalid signature")

        try:
            payload = json.loads((raw_body or b"{}").decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ValidationError("Malformed webhook payload")
        if not isinstance(payload, dict):
            raise ValidationError("Malformed webhook payload")

        event = (payload.get("event") or "").strip()
        data = payload.get("data") or {}
        reference = str(data.get("reference") or "").strip()

        gateway_id = str(data.get("id") or "").strip()
        if gateway_id:
            event_id = f"{event}:{gateway_id}"
        else:
            base = f"{event}:{reference}:{data.get('amount', '')}"
            event_id = hashlib.sha256(base.encode("utf-8")).hexdigest()[:32]

        if WebhookEvent.query.filter_by(event_id=event_id).first():
            return Result.success("Duplicate event ignored", replayed=True)

        received = WebhookEvent(provider="paystack", event_id=event_id, event_type=event, reference=reference, created_at=_now())
        db.session.add(received)
        AuditLog.record("paystack_webhook", "webhook", event=event, reference=reference)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            return Result.success("Duplicate event ignored", replayed=True)

        result = self.handle_gateway_webhook(event, data)
        if result.ok:
            received.mark(ignored=bool(result.data.get("ignored")))
        else:
            # an amount mismatch commits its audit row, which may have carried the claim with it
            WebhookEvent.query.filter_by(event_id=event_id).delete(synchronize_session=False)
        db.session.commit()
        return result
