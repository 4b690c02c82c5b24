import json
from datetime import datetime

from marketpay.extensions import db

KINDS = ("account", "refund", "market")


class Notification(db.Model):
    """In-app message shown in a user's or admin's inbox."""

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    recipient_model = db.Column(db.String(16), nullable=False, default="User")  # User | Admin
    type = db.Column(db.String(32), nullable=False, default="account")
    title = db.Column(db.String(160), nullable=True)
    body = db.Column(db.Text, nullable=False)
    meta = db.Column(db.Text, nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @classmethod
    def build(cls, user_id, title, body, *, kind="account", meta=None, recipient_model="User"):
        return cls(
            user_id=int(user_id),
            recipient_model=recipient_model,
            type=kind if kind in KINDS else "account",
            title=(title or "")[:160],
            body=body or "",
            meta=json.dumps(meta or {}, default=str),
        )

    def meta_dict(self) -> dict:
        try:
            d = json.loads(self.meta or "{}")
        except ValueError:
            return {}
        return d if isinstance(d, dict) else {}

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "recipient": {"model": self.recipient_model, "user_id": self.user_id},
            "title": self.title or "",
            "body": self.body or "",
            "meta": self.meta_dict(),
            "is_read": bool(self.is_read),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
