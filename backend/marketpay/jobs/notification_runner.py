from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from marketpay.extensions import db
from marketpay.models import NotificationQueue


def process_notification_queue(mailer, max_items: int = 80) -> dict:
    """Drain due outbox rows. Failures back off and dead-letter at max_attempts."""
    now = datetime.utcnow()
    counts = {"sent": 0, "failed": 0, "dead": 0}

    for row in NotificationQueue.due(now, max_items):
        if (row.channel or "").lower() == "email":
            ok, detail = mailer.send(row.to, row.subject or "", row.message)
        else:
            ok, detail = False, f"unsupported_channel:{row.channel}"

        if ok:
            row.mark_sent(now)
            counts["sent"] += 1
        elif row.mark_failed(detail, now):
            counts["dead"] += 1
            current_app.logger.warning("notification %s dead-lettered after %s attempts: %s", row.id, row.attempt_count, detail)
        else:
            counts["failed"] += 1

        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("could not record outcome for notification %s", row.id)

    return {"ok": True, **counts, "ts": now.isoformat()}
