from datetime import datetime
from decimal import Decimal

from marketpay.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    total_price = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))

    # pending -> paid -> refunded, or pending -> failed
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    delivery_type = db.Column(db.String(32), nullable=False, default="pickup")
    delivery_address = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    paid_at = db.Column(db.DateTime, nullable=True)

    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "buyer_id": int(self.buyer_id),
            "total_price": float(self.total_price or 0),
            "status": self.status,
            "delivery_type": self.delivery_type,
            "delivery_address": self.delivery_address or "",
            "items": [i.to_dict() for i in self.items],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    price = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))

    # Line split stored at checkout; release and clawback read these, never recompute
    seller_earnings = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))
    platform_revenue = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))

    clawed_back_at = db.Column(db.DateTime, nullable=True)

    product = db.relationship("Product", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "product_id": int(self.product_id),
            "seller_id": int(self.seller_id),
            "quantity": int(self.quantity or 0),
            "price": float(self.price or 0),
            "seller_earnings": float(self.seller_earnings or 0),
            "platform_revenue": float(self.platform_revenue or 0),
            "clawed_back_at": self.clawed_back_at.isoformat() if self.clawed_back_at else None,
        }
