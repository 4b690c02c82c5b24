from datetime import datetime

from marketpay.extensions import db


class WebhookEvent(db.Model):
    """One row per gateway event id; the unique key is what rejects replays."""

    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="paystack")
    event_id = db.Column(db.String(128), nullable=False, unique=True)
    event_type = db.Column(db.String(64), nullable=True)
    reference = db.Column(db.String(128), nullable=True, index=True)

    # received -> processed | ignored
    outcome = db.Column(db.String(16), nullable=False, default="received")
    processed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def mark(self, *, ignored: bool = False) -> None:
        self.outcome = "ignored" if ignored else "processed"
        self.processed_at = datetime.utcnow()

    def to_dict(self):
        return {
            "id": int(self.id),
            "provider": self.provider,
            "event": self.event_type or "",
            "event_id": self.event_id,
            "reference": self.reference or "",
            "outcome": self.outcome,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
