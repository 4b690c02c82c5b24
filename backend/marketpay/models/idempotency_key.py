from datetime import datetime

from marketpay.extensions import db


class IdempotencyKey(db.Model):
    """Client-supplied retry key for a POST, with the response it produced.

    ``response_json`` stays NULL while the first request is still running.
    """

    __tablename__ = "idempotency_keys"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False, unique=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    route = db.Column(db.String(64), nullable=False)
    request_hash = db.Column(db.String(64), nullable=False)

    status_code = db.Column(db.Integer, nullable=True)
    response_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def matches(self, user_id: int, request_hash: str) -> bool:
        return self.user_id == int(user_id) and self.request_hash == request_hash

    @property
    def completed(self) -> bool:
        return self.response_json is not None
