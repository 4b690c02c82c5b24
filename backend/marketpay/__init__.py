import logging
import os

from flask import Flask, jsonify
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from marketpay import auth, models  # noqa: F401
from marketpay.config import Config
from marketpay.extensions import db, migrate, cors, login_manager
from marketpay.segments.segment_orders import orders_bp
from marketpay.segments.segment_payments import payments_bp
from marketpay.segments.segment_transactions import transactions_bp
from marketpay.segments.segment_wallets import wallets_bp
from marketpay.segments.segment_payout_recipient import recipient_bp
from marketpay.segments.segment_admin_transactions import admin_txn_bp
from marketpay.services import build_services
from marketpay.utils.mailer import Mailer
from marketpay.utils.paystack_client import PaystackGateway

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _configure_logging(app: Flask) -> None:
    level = logging.DEBUG if app.config.get("ENV") == "dev" else logging.INFO
    if not any(getattr(h, "_marketpay", False) for h in app.logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._marketpay = True
        app.logger.addHandler(handler)
    app.logger.setLevel(level)


def create_app(config_overrides: dict | None = None, gateway=None, mailer=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    env = (app.config.get("ENV") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (app.config.get("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16 or secret == "dev-secret":
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        if not (app.config.get("PAYSTACK_SECRET_KEY") or "").strip() and gateway is None:
            raise RuntimeError("PAYSTACK_SECRET_KEY must be set in production")

    _configure_logging(app)

    # Ensure instance dir exists for SQLite paths
    db_url = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
        os.makedirs(app.config.get("INSTANCE_DIR") or Config.INSTANCE_DIR, exist_ok=True)

    # CORS configuration
    cors_origins = (app.config.get("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip() and o.strip() != "*"]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.extensions["marketpay"] = build_services(
        app.config,
        gateway or PaystackGateway.from_config(app.config),
        mailer or Mailer.from_config(app.config),
    )

    # Register API routes
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(recipient_bp)
    app.register_blueprint(admin_txn_bp)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            db.session.execute(text("SELECT 1"))
        except Exception:
            db_state = "fail"
        return jsonify({
            "ok": True,
            "service": "marketpay-backend",
            "env": env,
            "db": db_state,
        })

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"ok": False, "message": e.description, "error": e.name.lower().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def unhandled(e):
        db.session.rollback()
        app.logger.exception("unhandled error: %s", e)
        return jsonify({"ok": False, "message": "Internal server error", "error": "internal"}), 500

    with app.app_context():
        db.create_all()

    if app.config.get("SCHEDULER_ENABLED"):
        from marketpay.jobs.scheduler import start_scheduler
        app.extensions["marketpay_scheduler"] = start_scheduler(app)

    return app
