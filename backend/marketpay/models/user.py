from datetime import datetime
from decimal import Decimal

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from marketpay.extensions import db


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)

    password_hash = db.Column(db.String(255), nullable=False, default="")
    # Withdrawal PIN, hashed like the password
    pin_hash = db.Column(db.String(255), nullable=True)

    role = db.Column(db.String(32), nullable=False, default="buyer")  # buyer | seller | admin

    referral_code = db.Column(db.String(16), unique=True, index=True, nullable=True)
    referred_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Escrowed earnings (not withdrawable) and available balance
    pending_balance = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))
    balance = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    def set_pin(self, raw_pin: str) -> None:
        self.pin_hash = generate_password_hash(raw_pin)

    def check_pin(self, raw_pin: str) -> bool:
        if not self.pin_hash or not raw_pin:
            return False
        return check_password_hash(self.pin_hash, raw_pin)

    @property
    def is_admin(self) -> bool:
        return (self.role or "").strip().lower() == "admin"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role or "buyer",
            "referral_code": self.referral_code or "",
            "referred_by_id": int(self.referred_by_id) if self.referred_by_id is not None else None,
            "pending_balance": float(self.pending_balance or 0),
            "balance": float(self.balance or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
