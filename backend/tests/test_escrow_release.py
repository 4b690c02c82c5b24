from datetime import datetime, timedelta
from decimal import Decimal

from freezegun import freeze_time

from marketpay.extensions import db
from marketpay.jobs import escrow_runner
from marketpay.jobs.escrow_runner import run_escrow_release
from marketpay.models import Product, Transaction, User

PAID_AT = datetime(2026, 3, 1, 12, 0, 0)


def _sale(factory, buy, *, referrer=None, price="1000"):
    seller = factory.user("seller")
    buyer = factory.user(referred_by=referrer)
    product = factory.product(seller, price)
    with freeze_time(PAID_AT):
        txn = buy(buyer, [product])
    return seller, buyer, product, txn


def test_nothing_released_inside_holding_period(svc, factory, buy):
    seller, _, product, _ = _sale(factory, buy)

    with freeze_time(PAID_AT + timedelta(days=4, hours=23)):
        summary = run_escrow_release(svc.policy)

    assert summary["released"] == 0
    assert db.session.get(User, seller.id).pending_balance == Decimal("950")
    assert not db.session.get(Product, product.id).has_settled


def test_release_moves_earnings_and_pays_referrer(svc, factory, buy):
    referrer = factory.user()
    seller, _, product, _ = _sale(factory, buy, referrer=referrer)

    with freeze_time(PAID_AT + timedelta(days=5)):
        summary = run_escrow_release(svc.policy)

    assert summary["released"] == 1
    assert summary["errors"] == 0
    s = db.session.get(User, seller.id)
    assert s.pending_balance == Decimal("0")
    assert s.balance == Decimal("950")
    assert db.session.get(Product, product.id).has_settled

    release = Transaction.query.filter_by(kind="escrow_release").one()
    assert release.user_id == seller.id
    assert release.amount == Decimal("950")
    assert release.reference_id.startswith("ESC_")

    # 1% of the 50 platform revenue, rounded half up
    assert db.session.get(User, referrer.id).balance == Decimal("1")
    reward = Transaction.query.filter_by(kind="referral_reward").one()
    assert reward.user_id == referrer.id
    assert reward.reference_id.startswith("REF_")


def test_second_run_releases_nothing(svc, factory, buy):
    seller, _, _, _ = _sale(factory, buy)

    with freeze_time(PAID_AT + timedelta(days=6)):
        run_escrow_release(svc.policy)
        again = run_escrow_release(svc.policy)

    assert again["released"] == 0
    assert db.session.get(User, seller.id).balance == Decimal("950")
    assert Transaction.query.filter_by(kind="escrow_release").count() == 1


def test_short_pending_balance_is_skipped(svc, factory, buy):
    seller, _, product, _ = _sale(factory, buy)
    db.session.get(User, seller.id).pending_balance = Decimal("100")
    db.session.commit()

    with freeze_time(PAID_AT + timedelta(days=6)):
        summary = run_escrow_release(svc.policy)

    assert summary["skipped"] == 1
    assert summary["released"] == 0
    s = db.session.get(User, seller.id)
    assert s.pending_balance == Decimal("100")
    assert s.balance == Decimal("0")
    assert not db.session.get(Product, product.id).has_settled


def test_refund_requested_payment_is_held(svc, factory, buy):
    seller, buyer, _, txn = _sale(factory, buy)
    with freeze_time(PAID_AT + timedelta(days=1)):
        assert svc.refunds.request_refund(txn.id, buyer.id, "Wrong size delivered to me").ok

    with freeze_time(PAID_AT + timedelta(days=6)):
        summary = run_escrow_release(svc.policy)

    assert summary["processed"] == 0
    assert db.session.get(User, seller.id).pending_balance == Decimal("950")


def test_no_referral_reward_without_referrer(svc, factory, buy):
    _sale(factory, buy)
    with freeze_time(PAID_AT + timedelta(days=6)):
        run_escrow_release(svc.policy)
    assert Transaction.query.filter_by(kind="referral_reward").count() == 0


def test_small_batches_reach_every_due_payment(svc, factory, buy):
    sales = [_sale(factory, buy) for _ in range(3)]

    with freeze_time(PAID_AT + timedelta(days=6)):
        first = run_escrow_release(svc.policy, limit=2)
        second = run_escrow_release(svc.policy, limit=2)
        third = run_escrow_release(svc.policy, limit=2)

    assert first["released"] == 2
    assert second["released"] == 1
    assert third["processed"] == 0
    for seller, _, product, _ in sales:
        assert db.session.get(Product, product.id).has_settled
        s = db.session.get(User, seller.id)
        assert s.pending_balance == Decimal("0")
        assert s.balance == Decimal("950")


def test_failing_item_is_rolled_back_and_run_continues(svc, factory, buy, monkeypatch):
    bad_seller, _, bad_product, _ = _sale(factory, buy)
    good_seller, _, good_product, _ = _sale(factory, buy)
    bad_id = bad_seller.id

    real_record_txn = escrow_runner.record_txn

    def record_txn(**kw):
        if kw["user_id"] == bad_id:
            raise RuntimeError("ledger write failed")
        return real_record_txn(**kw)

    monkeypatch.setattr(escrow_runner, "record_txn", record_txn)

    with freeze_time(PAID_AT + timedelta(days=6)):
        summary = run_escrow_release(svc.policy)

    assert summary["errors"] == 1
    assert summary["released"] == 1

    assert not db.session.get(Product, bad_product.id).has_settled
    bad = db.session.get(User, bad_id)
    assert bad.pending_balance == Decimal("950")
    assert bad.balance == Decimal("0")

    assert db.session.get(Product, good_product.id).has_settled
    assert db.session.get(User, good_seller.id).balance == Decimal("950")
