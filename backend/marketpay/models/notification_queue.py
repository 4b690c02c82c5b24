from datetime import datetime, timedelta

from marketpay.extensions import db

RETRY_BASE_SECONDS = 15
RETRY_CAP_SECONDS = 3600


class NotificationQueue(db.Model):
    """Email outbox. Rows are written in the same commit as the money change
    they describe and drained by the notification job."""

    __tablename__ = "notification_queue"

    id = db.Column(db.Integer, primary_key=True)
    channel = db.Column(db.String(32), nullable=False, default="email")
    to = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(200), nullable=True)
    message = db.Column(db.Text, nullable=False)
    reference = db.Column(db.String(128), nullable=True)

    # queued -> sent | dead
    status = db.Column(db.String(16), nullable=False, default="queued", index=True)
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    max_attempts = db.Column(db.Integer, nullable=False, default=5)
    next_attempt_at = db.Column(db.DateTime, nullable=True, index=True)
    last_error = db.Column(db.String(240), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    sent_at = db.Column(db.DateTime, nullable=True)
    dead_lettered_at = db.Column(db.DateTime, nullable=True)

    @classmethod
    def email(cls, to: str, subject: str, html: str, reference: str = ""):
        return cls(
            channel="email",
            to=to.strip(),
            subject=(subject or "")[:200],
            message=html or "",
            reference=(reference or "")[:128] or None,
        )

    @classmethod
    def due(cls, now: datetime, limit: int):
        return (
            cls.query.filter(cls.status == "queued")
            .filter(db.or_(cls.next_attempt_at.is_(None), cls.next_attempt_at <= now))
            .order_by(cls.created_at.asc(), cls.id.asc())
            .limit(limit)
            .all()
        )

    def mark_sent(self, now: datetime) -> None:
        self.status = "sent"
        self.sent_at = now
        self.last_error = None
        self.next_attempt_at = None

    def mark_failed(self, detail: str, now: datetime) -> bool:
        """Count a failed send. True when the row is now dead-lettered."""
        self.attempt_count = int(self.attempt_count or 0) + 1
        self.last_error = (detail or "send_failed")[:240]
        if self.attempt_count >= int(self.max_attempts or 1):
            self.status = "dead"
            self.dead_lettered_at = now
            self.next_attempt_at = None
            return True
        delay = min(RETRY_BASE_SECONDS * 2 ** self.attempt_count, RETRY_CAP_SECONDS)
        self.next_attempt_at = now + timedelta(seconds=delay)
        return False

    def to_dict(self):
        return {
            "id": int(self.id),
            "channel": self.channel,
            "to": self.to,
            "subject": self.subject or "",
            "reference": self.reference or "",
            "status": self.status,
            "attempts": {"made": int(self.attempt_count or 0), "max": int(self.max_attempts or 0)},
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "last_error": self.last_error or "",
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }
