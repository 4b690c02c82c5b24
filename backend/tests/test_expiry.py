from datetime import datetime, timedelta

from freezegun import freeze_time

from marketpay.extensions import db
from marketpay.jobs.expiry_runner import cancel_expired_transactions, unreserve_expired_products
from marketpay.models import Order, Product, Transaction

STARTED = datetime(2026, 3, 1, 10, 0, 0)


def _pending(svc, factory, buy):
    seller = factory.user("seller")
    buyer = factory.user()
    product = factory.product(seller)
    with freeze_time(STARTED):
        txn = buy(buyer, [product], verify=False)
    return txn, product


def test_expired_attempts_are_cancelled(svc, factory, buy):
    txn, product = _pending(svc, factory, buy)

    with freeze_time(STARTED + timedelta(minutes=29)):
        assert cancel_expired_transactions()["cancelled"] == 0
    with freeze_time(STARTED + timedelta(minutes=30)):
        assert cancel_expired_transactions()["cancelled"] == 1

    assert db.session.get(Transaction, txn.id).status == "cancelled"
    # the order stays open for a new attempt
    assert db.session.get(Order, txn.order_id).status == "pending"
    assert db.session.get(Product, product.id).is_reserved


def test_completed_payments_are_not_cancelled(svc, factory, buy):
    seller = factory.user("seller")
    buyer = factory.user()
    with freeze_time(STARTED):
        txn = buy(buyer, [factory.product(seller)])

    with freeze_time(STARTED + timedelta(hours=2)):
        assert cancel_expired_transactions()["cancelled"] == 0
    assert db.session.get(Transaction, txn.id).status == "completed"


def test_stale_reservations_are_released(svc, factory, buy):
    _, product = _pending(svc, factory, buy)

    with freeze_time(STARTED + timedelta(minutes=59)):
        assert unreserve_expired_products(svc.policy)["unreserved"] == 0
    with freeze_time(STARTED + timedelta(minutes=61)):
        assert unreserve_expired_products(svc.policy)["unreserved"] == 1

    p = db.session.get(Product, product.id)
    assert not p.is_reserved
    assert p.reserved_order_id is None


def test_sold_products_keep_their_state(svc, factory, buy):
    seller = factory.user("seller")
    buyer = factory.user()
    product = factory.product(seller)
    with freeze_time(STARTED):
        buy(buyer, [product])

    with freeze_time(STARTED + timedelta(days=1)):
        assert unreserve_expired_products(svc.policy)["unreserved"] == 0
    assert db.session.get(Product, product.id).is_sold


def test_released_product_can_be_bought_by_someone_else(svc, factory, buy):
    _, product = _pending(svc, factory, buy)
    other = factory.user()

    with freeze_time(STARTED + timedelta(minutes=61)):
        unreserve_expired_products(svc.policy)
        order = svc.payments.checkout(other.id, [product.id])
        assert order.ok
        res = svc.payments.initiate_order_payment(order.data["order"]["id"], other.id)
    assert res.ok
    assert db.session.get(Product, product.id).reserved_order_id == order.data["order"]["id"]
