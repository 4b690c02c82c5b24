import json
from datetime import datetime, timedelta
from decimal import Decimal

from freezegun import freeze_time

from marketpay.extensions import db
from marketpay.jobs.escrow_runner import run_escrow_release
from marketpay.jobs.ledger_reconciler import expected_holdings, reconcile_ledger
from marketpay.models import AuditLog, User

PAID_AT = datetime(2026, 3, 1, 12, 0, 0)


def test_clean_ledger_has_no_anomalies(svc, factory, buy):
    referrer = factory.user()
    seller = factory.user("seller")
    buyer = factory.user(referred_by=referrer)
    with freeze_time(PAID_AT):
        buy(buyer, [factory.product(seller, "1000")])
    with freeze_time(PAID_AT + timedelta(days=5)):
        run_escrow_release(svc.policy)

    assert expected_holdings(seller.id) == Decimal("950")
    assert expected_holdings(referrer.id) == Decimal("1")

    summary = reconcile_ledger()
    assert summary["anomalies"] == 0
    assert summary["checked"] == 3
    assert AuditLog.query.filter_by(action="ledger_anomaly").count() == 0


def test_withdrawals_and_clawbacks_are_accounted(svc, factory, buy):
    seller = factory.user("seller", pin="1234")
    buyer = factory.user()
    admin = factory.user("admin")
    with freeze_time(PAID_AT):
        buy(buyer, [factory.product(seller, "1000")])
        refunded = buy(buyer, [factory.product(seller, "400")])
    with freeze_time(PAID_AT + timedelta(days=1)):
        svc.refunds.request_refund(refunded.id, buyer.id, "Item was not as described")
        assert svc.refunds.decide_refund(refunded.id, admin.id, "approve").ok
    with freeze_time(PAID_AT + timedelta(days=5)):
        run_escrow_release(svc.policy)

    svc.withdrawals.set_recipient(seller.id, "0123456789", "058")
    assert svc.withdrawals.withdraw(seller.id, "500", "1234").ok

    assert expected_holdings(seller.id) == Decimal("450")
    assert reconcile_ledger()["anomalies"] == 0


def test_mismatch_is_logged_not_corrected(factory):
    user = factory.user("seller", balance="250")

    summary = reconcile_ledger()

    assert summary["anomalies"] == 1
    row = AuditLog.query.filter_by(action="ledger_anomaly").one()
    assert row.target_id == user.id
    meta = json.loads(row.meta)
    assert meta["issues"] == ["ledger_mismatch"]
    assert meta["computed_holdings"] == "0.0000"
    assert db.session.get(User, user.id).balance == Decimal("250")


def test_negative_balances_are_flagged(factory):
    user = factory.user("seller", pending="-5")
    reconcile_ledger()
    row = AuditLog.query.filter_by(action="ledger_anomaly").one()
    assert row.target_id == user.id
    meta = json.loads(row.meta)
    assert "negative_pending_balance" in meta["issues"]
