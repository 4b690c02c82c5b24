from datetime import datetime

from marketpay.extensions import db


class PayoutRecipient(db.Model):
    __tablename__ = "payout_recipients"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)

    provider = db.Column(db.String(32), nullable=False, default="paystack")
    recipient_code = db.Column(db.String(128), nullable=False)

    account_number = db.Column(db.String(20), nullable=False)
    bank_code = db.Column(db.String(16), nullable=False)
    account_name = db.Column(db.String(120), nullable=True)
    bank_name = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def masked_account(self) -> str:
        acct = self.account_number or ""
        return ("*" * max(len(acct) - 4, 0)) + acct[-4:]

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "provider": self.provider,
            "account_number": self.masked_account(),
            "bank_code": self.bank_code,
            "account_name": self.account_name or "",
            "bank_name": self.bank_name or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
