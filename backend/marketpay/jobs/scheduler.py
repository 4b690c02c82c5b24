from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler

from marketpay.jobs.escrow_runner import run_escrow_release
from marketpay.jobs.expiry_runner import cancel_expired_transactions, unreserve_expired_products
from marketpay.jobs.ledger_reconciler import reconcile_ledger
from marketpay.jobs.notification_runner import process_notification_queue
from marketpay.services import services


def _escrow_release():
    return run_escrow_release(services().policy)


def _expire_transactions():
    return cancel_expired_transactions()


def _unreserve_products():
    return unreserve_expired_products(services().policy)


def _reconcile_ledger():
    return reconcile_ledger()


def _send_notifications():
    return process_notification_queue(services().mailer)


JOBS = {
    "escrow_release": _escrow_release,
    "expire_transactions": _expire_transactions,
    "unreserve_products": _unreserve_products,
    "ledger_reconcile": _reconcile_ledger,
    "notifications": _send_notifications,
}


def run_job(name: str) -> dict | None:
    """Run one job in the current app context; None for an unknown name."""
    fn = JOBS.get((name or "").strip())
    if fn is None:
        return None
    return fn()


def _in_context(app, name: str):
    def runner():
        with app.app_context():
            try:
                run_job(name)
            except Exception:
                app.logger.exception("job %s failed", name)
    return runner


def start_scheduler(app) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        _in_context(app, "escrow_release"),
        "cron",
        hour=int(app.config.get("ESCROW_RELEASE_HOUR", 2)),
        minute=0,
        id="escrow_release",
    )
    scheduler.add_job(_in_context(app, "expire_transactions"), "interval", minutes=5, id="expire_transactions")
    scheduler.add_job(_in_context(app, "unreserve_products"), "interval", minutes=10, id="unreserve_products")
    scheduler.add_job(_in_context(app, "notifications"), "interval", minutes=1, id="notifications")
    scheduler.add_job(_in_context(app, "ledger_reconcile"), "cron", hour=4, minute=30, id="ledger_reconcile")

    scheduler.start()
    app.logger.info("scheduler started with %s jobs", len(JOBS))
    return scheduler
