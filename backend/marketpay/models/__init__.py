from .user import User  # noqa: F401
from .product import Product  # noqa: F401
from .order import Order, OrderItem  # noqa: F401
from .transaction import Transaction, RefundHistoryEntry  # noqa: F401
from .payout_recipient import PayoutRecipient  # noqa: F401

from .notification import Notification  # noqa: F401
from .notification_queue import NotificationQueue  # noqa: F401

from .webhook_event import WebhookEvent  # noqa: F401
from .audit_log import AuditLog  # noqa: F401
from .idempotency_key import IdempotencyKey  # noqa: F401
