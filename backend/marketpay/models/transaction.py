from datetime import datetime
from decimal import Decimal

from marketpay.extensions import db


TRANSACTION_STATUSES = ("pending", "completed", "failed", "refund", "refunded", "cancelled")
REFUND_STATUSES = ("pending", "approved", "rejected", "processed")

# A transaction in one of these has already been paid for
PAID_STATUSES = ("completed", "refund", "refunded")


class Transaction(db.Model):
    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)

    # order_<orderId>[_<attempt>] | WD_<token> | ESC_<itemId> | REF_<itemId> | CB_<itemId>
    reference_id = db.Column(db.String(80), nullable=True, unique=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # order_payment | escrow_release | referral_reward | refund_clawback | withdrawal
    kind = db.Column(db.String(32), nullable=False, default="order_payment", index=True)
    transaction_type = db.Column(db.String(8), nullable=False)  # credit/debit
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    amount = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))
    total_amount = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))
    charges = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))
    commission_rate = db.Column(db.Numeric(8, 4), nullable=True)
    platform_commission = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))
    seller_earnings = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))
    net_revenue = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))

    description = db.Column(db.String(255), nullable=True)

    transaction_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    expires_at = db.Column(db.DateTime, nullable=True, index=True)

    authorization_url = db.Column(db.String(512), nullable=True)
    # Provider side id (transfer code for withdrawals)
    gateway_reference = db.Column(db.String(128), nullable=True)

    # Refund request
    refund_reason = db.Column(db.String(500), nullable=True)
    refund_requested_by = db.Column(db.Integer, nullable=True)
    refund_requested_at = db.Column(db.DateTime, nullable=True)
    refund_admin_notes = db.Column(db.String(500), nullable=True)

    refund_status = db.Column(db.String(16), nullable=True, index=True)

    # Refund details
    gateway_refund_id = db.Column(db.String(128), nullable=True)
    refund_amount = db.Column(db.Numeric(18, 4), nullable=True)
    refund_processed_at = db.Column(db.DateTime, nullable=True)
    refund_processed_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    refund_history = db.relationship(
        "RefundHistoryEntry",
        backref="transaction",
        lazy=True,
        order_by="RefundHistoryEntry.id",
    )

    @property
    def has_refund_request(self) -> bool:
        return self.refund_requested_at is not None

    def add_history(self, action: str, performed_by: int, notes: str = "") -> "RefundHistoryEntry":
        entry = RefundHistoryEntry(
            transaction_id=self.id,
            action=action[:120],
            performed_by=int(performed_by),
            performed_at=datetime.utcnow(),
            notes=(notes or "")[:500],
        )
        db.session.add(entry)
        return entry

    def refund_request_dict(self):
        if not self.has_refund_request:
            return None
        return {
            "reason": self.refund_reason or "",
            "requested_by": self.refund_requested_by,
            "requested_at": self.refund_requested_at.isoformat() if self.refund_requested_at else None,
            "admin_notes": self.refund_admin_notes or "",
        }

    def refund_details_dict(self):
        if not self.gateway_refund_id:
            return None
        return {
            "gateway_refund_id": self.gateway_refund_id,
            "refund_amount": float(self.refund_amount or 0),
            "processed_at": self.refund_processed_at.isoformat() if self.refund_processed_at else None,
            "processed_by": self.refund_processed_by,
        }

    def refund_dict(self) -> dict:
        return {
            "transaction_id": int(self.id),
            "amount": float(self.amount or 0),
            "status": self.status,
            "refund_request": self.refund_request_dict(),
            "refund_status": self.refund_status,
            "refund_details": self.refund_details_dict(),
            "refund_history": [h.to_dict() for h in self.refund_history],
        }

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "reference_id": self.reference_id or "",
            "order_id": int(self.order_id) if self.order_id is not None else None,
            "user_id": int(self.user_id),
            "kind": self.kind,
            "transaction_type": self.transaction_type,
            "status": self.status,
            "amount": float(self.amount or 0),
            "total_amount": float(self.total_amount or 0),
            "charges": float(self.charges or 0),
            "commission_rate": float(self.commission_rate) if self.commission_rate is not None else None,
            "platform_commission": float(self.platform_commission or 0),
            "seller_earnings": float(self.seller_earnings or 0),
            "net_revenue": float(self.net_revenue or 0),
            "description": self.description or "",
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "refund_status": self.refund_status,
            "refund_request": self.refund_request_dict(),
            "refund_details": self.refund_details_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class RefundHistoryEntry(db.Model):
    """Append-only refund audit trail for one transaction."""

    __tablename__ = "refund_history"

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)

    action = db.Column(db.String(120), nullable=False)
    performed_by = db.Column(db.Integer, nullable=False)
    performed_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    notes = db.Column(db.String(500), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "action": self.action,
            "performed_by": int(self.performed_by),
            "performed_at": self.performed_at.isoformat() if self.performed_at else None,
            "notes": self.notes or "",
        }
