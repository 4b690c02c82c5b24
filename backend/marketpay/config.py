import os
from dataclasses import dataclass
from decimal import Decimal


def _normalize_database_url(url: str) -> str:
    # Render/Heroku sometimes provide postgres:// which SQLAlchemy expects as postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _flag(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Base directory of the backend (one level above this `marketpay` package)
    BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    INSTANCE_DIR = os.path.join(BACKEND_DIR, "instance")

    ENV = (os.getenv("MARKETPAY_ENV", "dev") or "dev").strip().lower()
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    JWT_ACCESS_TTL_SECONDS = int(os.getenv("JWT_ACCESS_TTL_SECONDS", str(7 * 24 * 3600)))

    _default_sqlite_path = os.path.join(INSTANCE_DIR, "marketpay.db").replace("\\", "/")
    _db_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL") or f"sqlite:///{_default_sqlite_path}"
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(_db_url)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CORS: comma-separated origins for web builds
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Paystack
    PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "").strip()
    PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co").rstrip("/")
    PAYSTACK_TIMEOUT_SECONDS = float(os.getenv("PAYSTACK_TIMEOUT_SECONDS", "20"))
    PAYSTACK_CALLBACK_URL = os.getenv("PAYSTACK_CALLBACK_URL", "")

    # Transactional email (HTTP API)
    MAIL_API_URL = os.getenv("MAIL_API_URL", "https://api.brevo.com/v3/smtp/email")
    MAIL_API_KEY = os.getenv("MAIL_API_KEY", "")
    MAIL_FROM = os.getenv("MAIL_FROM", "no-reply@marketpay.local")
    MAIL_TIMEOUT_SECONDS = float(os.getenv("MAIL_TIMEOUT_SECONDS", "10"))

    # Settlement policy
    COMMISSION_RATE = os.getenv("COMMISSION_RATE", "0.05")
    GATEWAY_FEE_RATE = os.getenv("GATEWAY_FEE_RATE", "0.015")
    GATEWAY_FLAT_FEE = os.getenv("GATEWAY_FLAT_FEE", "100")
    REFERRAL_REWARD_RATE = os.getenv("REFERRAL_REWARD_RATE", "0.01")
    HOLDING_DAYS = int(os.getenv("HOLDING_DAYS", "5"))
    REFUND_WINDOW_DAYS = int(os.getenv("REFUND_WINDOW_DAYS", "5"))
    PAYMENT_EXPIRY_MINUTES = int(os.getenv("PAYMENT_EXPIRY_MINUTES", "30"))
    RESERVATION_MINUTES = int(os.getenv("RESERVATION_MINUTES", "60"))

    # Background jobs
    SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED", "0")
    ESCROW_RELEASE_HOUR = int(os.getenv("ESCROW_RELEASE_HOUR", "2"))


@dataclass(frozen=True)
class SettlementPolicy:
    """Money rules in effect for new sales and the release/refund windows."""

    commission_rate: Decimal = Decimal("0.05")
    gateway_fee_rate: Decimal = Decimal("0.015")
    gateway_flat_fee: Decimal = Decimal("100")
    referral_reward_rate: Decimal = Decimal("0.01")
    holding_days: int = 5
    refund_window_days: int = 5
    payment_expiry_minutes: int = 30
    reservation_minutes: int = 60

    @classmethod
    def from_config(cls, cfg) -> "SettlementPolicy":
        return cls(
            commission_rate=Decimal(str(cfg.get("COMMISSION_RATE", "0.05"))),
            gateway_fee_rate=Decimal(str(cfg.get("GATEWAY_FEE_RATE", "0.015"))),
            gateway_flat_fee=Decimal(str(cfg.get("GATEWAY_FLAT_FEE", "100"))),
            referral_reward_rate=Decimal(str(cfg.get("REFERRAL_REWARD_RATE", "0.01"))),
            holding_days=int(cfg.get("HOLDING_DAYS", 5)),
            refund_window_days=int(cfg.get("REFUND_WINDOW_DAYS", 5)),
            payment_expiry_minutes=int(cfg.get("PAYMENT_EXPIRY_MINUTES", 30)),
            reservation_minutes=int(cfg.get("RESERVATION_MINUTES", 60)),
        )
