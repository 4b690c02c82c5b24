"""In-app notifications plus queued email.

Called after the money state is committed. A failure here is logged and
swallowed so it can never undo or block a settlement step.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from marketpay.extensions import db
from marketpay.models import Notification, NotificationQueue, User


def notify_user(
    user_id: int,
    title: str,
    body: str,
    *,
    kind: str = "account",
    meta: dict | None = None,
    email: bool = True,
    recipient_model: str = "User",
) -> bool:
    try:
        user = db.session.get(User, int(user_id))
        if not user:
            return False
        db.session.add(Notification.build(user.id, title, body, kind=kind, meta=meta, recipient_model=recipient_model))
        if email and (user.email or "").strip():
            reference = str((meta or {}).get("reference", ""))
            db.session.add(NotificationQueue.email(user.email, title, f"<p>{body}</p>", reference))
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("notify_user failed user_id=%s title=%s", user_id, title)
        return False


def notify_admins(title: str, body: str, *, kind: str = "refund", meta: dict | None = None) -> int:
    sent = 0
    admin_ids = [row[0] for row in db.session.query(User.id).filter(User.role == "admin").all()]
    for admin_id in admin_ids:
        if notify_user(admin_id, title, body, kind=kind, meta=meta, recipient_model="Admin"):
            sent += 1
    return sent
