import json
from datetime import datetime

from marketpay.extensions import db


class AuditLog(db.Model):
    """Append-only trail of money decisions: webhook intake, amount mismatches,
    refund decisions and ledger anomalies."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    actor_user_id = db.Column(db.Integer, nullable=True, index=True)  # None for jobs and the gateway
    action = db.Column(db.String(64), nullable=False, index=True)
    target_type = db.Column(db.String(32), nullable=True)  # transaction | user | webhook
    target_id = db.Column(db.Integer, nullable=True)
    meta = db.Column(db.Text, nullable=True)  # JSON string

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    @classmethod
    def record(cls, action: str, target_type: str, target_id=None, *, actor_id=None, at=None, **meta) -> "AuditLog":
        """Add a row to the current session; the caller commits."""
        row = cls(
            actor_user_id=int(actor_id) if actor_id is not None else None,
            action=action[:64],
            target_type=target_type,
            target_id=int(target_id) if target_id is not None else None,
            meta=json.dumps(meta, default=str),
            created_at=at or datetime.utcnow(),
        )
        db.session.add(row)
        return row

    def meta_dict(self) -> dict:
        try:
            d = json.loads(self.meta or "{}")
        except ValueError:
            return {}
        return d if isinstance(d, dict) else {}

    def to_dict(self):
        return {
            "id": int(self.id),
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "target": {"type": self.target_type, "id": self.target_id},
            "meta": self.meta_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
