"""Pytest configuration and fixtures."""

import hashlib
import hmac
import json
from datetime import datetime
from decimal import Decimal

import pytest
from flask import g

from marketpay import create_app
from marketpay.errors import InvalidRecipient
from marketpay.extensions import db
from marketpay.models import Product, Transaction, User
from marketpay.services import services
from marketpay.utils.jwt_utils import create_access_token
from marketpay.utils.paystack_client import verify_signature

WEBHOOK_SECRET = "sk_test_webhook"


class FakeGateway:
    """In-memory stand-in for PaystackGateway."""

    provider = "paystack"

    def __init__(self):
        self.charges = {}
        self.initiated = []
        self.refunds = []
        self.transfers = []
        self.fail_initiate = None
        self.fail_refund = None
        self.fail_transfer = None

    def mark_paid(self, reference, amount, status="success"):
        self.charges[reference] = {"status": status, "amount_paid": Decimal(str(amount))}

    def verify_signature(self, raw_body, signature):
        return verify_signature(WEBHOOK_SECRET, raw_body, signature)

    def initiate_charge(self, email, amount, reference, callback_url=""):
        self.initiated.append((reference, Decimal(str(amount))))
        if self.fail_initiate is not None:
            raise self.fail_initiate
        return {"reference": reference, "redirect_url": f"https://checkout.test/{reference}"}

    def verify_charge(self, reference):
        return self.charges.get(reference, {"status": "abandoned", "amount_paid": Decimal("0")})

    def transfer_payout(self, recipient_code, amount, note, reference):
        if self.fail_transfer is not None:
            raise self.fail_transfer
        self.transfers.append((recipient_code, Decimal(str(amount)), reference))
        return {"transfer_id": f"TRF_{len(self.transfers)}", "status": "success", "reference": reference}

    def process_refund(self, reference, amount):
        if self.fail_refund is not None:
            raise self.fail_refund
        self.refunds.append((reference, Decimal(str(amount))))
        return {"refund_id": f"RF_{len(self.refunds)}", "status": "pending"}

    def create_recipient(self, account_number, bank_code):
        if account_number == "0000000000":
            raise InvalidRecipient("Could not resolve account name")
        return {"recipient_code": f"RCP_{account_number}", "account_name": "Ada Seller", "bank_name": "Test Bank"}


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, body_html):
        if self.fail:
            return False, "mail_http_503"
        self.sent.append((to, subject, body_html))
        return True, "sent"


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def app(gateway, mailer):
    app = create_app(
        {
            "TESTING": True,
            "ENV": "test",
            "SECRET_KEY": "test-secret-key-123",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SCHEDULER_ENABLED": False,
        },
        gateway=gateway,
        mailer=mailer,
    )

    @app.teardown_request
    def _forget_login(exc):
        # requests share the fixture's app context, and with it g
        g.pop("_login_user", None)

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def svc(app):
    return services()


class Factory:
    def __init__(self):
        self._n = 0

    def user(self, role="buyer", *, pin=None, referred_by=None, pending="0", balance="0") -> User:
        self._n += 1
        u = User(
            name=f"{role.title()} {self._n}",
            email=f"{role}{self._n}@example.com",
            role=role,
            referral_code=f"REF{self._n:04d}",
            referred_by_id=referred_by.id if referred_by else None,
            pending_balance=Decimal(pending),
            balance=Decimal(balance),
            created_at=datetime.utcnow(),
        )
        u.set_password("password123")
        if pin:
            u.set_pin(pin)
        db.session.add(u)
        db.session.commit()
        return u

    def product(self, seller: User, price="1000", **kw) -> Product:
        self._n += 1
        p = Product(
            seller_id=seller.id,
            name=f"Item {self._n}",
            price=Decimal(price),
            is_approved=kw.pop("is_approved", True),
            created_at=datetime.utcnow(),
            **kw,
        )
        db.session.add(p)
        db.session.commit()
        return p


@pytest.fixture
def factory(app):
    return Factory()


@pytest.fixture
def buy(svc, gateway):
    """Run checkout -> initiate -> gateway paid -> verify for one buyer; returns the payment Transaction."""

    def _buy(buyer, products, *, verify=True):
        order = svc.payments.checkout(buyer.id, [p.id for p in products])
        assert order.ok, order.message
        init = svc.payments.initiate_order_payment(order.data["order"]["id"], buyer.id)
        assert init.ok, init.message
        ref = init.data["reference"]
        txn = Transaction.query.filter_by(reference_id=ref).one()
        gateway.mark_paid(ref, txn.total_amount)
        if verify:
            res = svc.payments.verify_payment(ref, buyer.id)
            assert res.ok, res.message
        return db.session.get(Transaction, txn.id)

    return _buy


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def signed(payload: dict) -> tuple[bytes, str]:
    raw = json.dumps(payload).encode("utf-8")
    sig = hmac.new(WEBHOOK_SECRET.encode("utf-8"), raw, hashlib.sha512).hexdigest()
    return raw, sig


@pytest.fixture
def auth():
    return auth_headers


@pytest.fixture
def sign():
    return signed
