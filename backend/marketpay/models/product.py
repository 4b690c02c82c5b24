from datetime import datetime
from decimal import Decimal

from marketpay.extensions import db


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)

    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(160), nullable=False)
    price = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))

    is_approved = db.Column(db.Boolean, nullable=False, default=False)
    is_sold = db.Column(db.Boolean, nullable=False, default=False)
    # Flipped once by the escrow release job
    has_settled = db.Column(db.Boolean, nullable=False, default=False)

    # Temporary hold while a checkout payment is in flight
    is_reserved = db.Column(db.Boolean, nullable=False, default=False)
    reserved_at = db.Column(db.DateTime, nullable=True)
    reserved_order_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "seller_id": int(self.seller_id),
            "name": self.name,
            "price": float(self.price or 0),
            "is_approved": bool(self.is_approved),
            "is_sold": bool(self.is_sold),
            "has_settled": bool(self.has_settled),
            "is_reserved": bool(self.is_reserved),
            "reserved_at": self.reserved_at.isoformat() if self.reserved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
