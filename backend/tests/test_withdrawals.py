from decimal import Decimal

import pytest

from marketpay.errors import GatewayError, GatewayTimeout
from marketpay.extensions import db
from marketpay.models import PayoutRecipient, Transaction, User


@pytest.fixture
def seller(factory, svc):
    user = factory.user("seller", pin="1234", balance="5000")
    assert svc.withdrawals.set_recipient(user.id, "0123456789", "058").ok
    return user


def _balance(user):
    return db.session.get(User, user.id).balance


def test_set_recipient_saves_bank_details(svc, factory):
    user = factory.user("seller")
    res = svc.withdrawals.set_recipient(user.id, "0123456789", "058")
    assert res.ok
    row = PayoutRecipient.query.filter_by(user_id=user.id).one()
    assert row.recipient_code == "RCP_0123456789"
    assert row.account_name == "Ada Seller"

    # saving again updates the same row
    assert svc.withdrawals.set_recipient(user.id, "9876543210", "044").ok
    assert PayoutRecipient.query.filter_by(user_id=user.id).count() == 1
    assert svc.withdrawals.get_recipient(user.id).data["recipient"]["bank_code"] == "044"


@pytest.mark.parametrize("acct,bank", [("12345", "058"), ("01234567ab", "058"), ("0123456789", "")])
def test_set_recipient_validates_account(svc, factory, acct, bank):
    user = factory.user("seller")
    assert svc.withdrawals.set_recipient(user.id, acct, bank).kind == "validation"


def test_unresolvable_account_is_rejected(svc, factory):
    user = factory.user("seller")
    res = svc.withdrawals.set_recipient(user.id, "0000000000", "058")
    assert res.kind == "invalid_recipient"
    assert PayoutRecipient.query.count() == 0


def test_withdraw_success(svc, seller, gateway):
    res = svc.withdrawals.withdraw(seller.id, "2000", "1234")

    assert res.ok, res.message
    assert res.data["status"] == "completed"
    assert _balance(seller) == Decimal("3000")
    assert gateway.transfers == [("RCP_0123456789", Decimal("2000"), res.data["reference"])]
    txn = Transaction.query.filter_by(kind="withdrawal").one()
    assert txn.status == "completed"
    assert txn.transaction_type == "debit"
    assert txn.reference_id.startswith("WD_")
    assert txn.gateway_reference == "TRF_1"


def test_withdraw_requires_pin(svc, factory):
    user = factory.user("seller", balance="500")
    assert svc.withdrawals.withdraw(user.id, "100", "1234").status_code == 403


def test_wrong_pin(svc, seller):
    res = svc.withdrawals.withdraw(seller.id, "100", "9999")
    assert res.status_code == 403
    assert res.message == "Invalid PIN"
    assert _balance(seller) == Decimal("5000")


@pytest.mark.parametrize("amount", ["0", "-10", "abc", "NaN", float("nan"), "Infinity"])
def test_invalid_amount(svc, seller, amount):
    assert svc.withdrawals.withdraw(seller.id, amount, "1234").kind == "validation"


def test_insufficient_balance(svc, seller, gateway):
    res = svc.withdrawals.withdraw(seller.id, "5000.01", "1234")
    assert res.kind == "insufficient_balance"
    assert _balance(seller) == Decimal("5000")
    assert gateway.transfers == []
    assert Transaction.query.filter_by(kind="withdrawal").count() == 0


def test_withdraw_without_recipient(svc, factory):
    user = factory.user("seller", pin="1234", balance="500")
    res = svc.withdrawals.withdraw(user.id, "100", "1234")
    assert res.kind == "validation"
    assert _balance(user) == Decimal("500")


def test_inline_bank_details_create_recipient(svc, factory, gateway):
    user = factory.user("seller", pin="1234", balance="500")
    res = svc.withdrawals.withdraw(user.id, "100", "1234", account_number="1111111111", bank_code="058")
    assert res.ok
    assert gateway.transfers[0][0] == "RCP_1111111111"
    assert PayoutRecipient.query.filter_by(user_id=user.id).one().account_number == "1111111111"


def test_inline_bank_details_must_match_saved_account(svc, seller, gateway):
    res = svc.withdrawals.withdraw(seller.id, "1000", "1234", account_number="9999999999", bank_code="058")

    assert res.kind == "validation"
    assert res.message == "Account details do not match your saved payout account"
    assert gateway.transfers == []
    assert _balance(seller) == Decimal("5000")
    assert Transaction.query.filter_by(kind="withdrawal").count() == 0
    assert PayoutRecipient.query.filter_by(user_id=seller.id).one().account_number == "0123456789"

    same = svc.withdrawals.withdraw(seller.id, "1000", "1234", account_number="0123456789", bank_code="058")
    assert same.ok
    assert gateway.transfers[0][0] == "RCP_0123456789"


def test_gateway_error_restores_balance(svc, seller, gateway):
    gateway.fail_transfer = GatewayError("Transfer rejected")
    res = svc.withdrawals.withdraw(seller.id, "2000", "1234")

    assert res.kind == "gateway_error"
    assert _balance(seller) == Decimal("5000")
    assert Transaction.query.filter_by(kind="withdrawal").one().status == "failed"


def test_timeout_stays_pending_until_webhook(svc, seller, gateway, sign):
    gateway.fail_transfer = GatewayTimeout("timed out")
    res = svc.withdrawals.withdraw(seller.id, "2000", "1234")

    assert res.ok
    assert res.status_code == 202
    assert res.data["status"] == "pending"
    assert _balance(seller) == Decimal("3000")

    raw, sig = sign({"event": "transfer.failed", "data": {"id": 77, "reference": res.data["reference"]}})
    failed = svc.payments.handle_paystack_event(raw, sig)
    assert failed.ok
    assert _balance(seller) == Decimal("5000")
    assert Transaction.query.filter_by(kind="withdrawal").one().status == "failed"


def test_reversal_credits_back_once(svc, seller, sign):
    res = svc.withdrawals.withdraw(seller.id, "2000", "1234")
    ref = res.data["reference"]

    raw, sig = sign({"event": "transfer.reversed", "data": {"id": 80, "reference": ref}})
    assert svc.payments.handle_paystack_event(raw, sig).ok
    assert _balance(seller) == Decimal("5000")

    # a different event for the same transfer must not credit again
    raw, sig = sign({"event": "transfer.failed", "data": {"id": 81, "reference": ref}})
    again = svc.payments.handle_paystack_event(raw, sig)
    assert again.ok
    assert again.data["ignored"] is True
    assert _balance(seller) == Decimal("5000")


def test_transfer_success_webhook_confirms_pending(svc, seller, gateway, sign):
    gateway.fail_transfer = GatewayTimeout("timed out")
    res = svc.withdrawals.withdraw(seller.id, "1000", "1234")

    raw, sig = sign({"event": "transfer.success", "data": {"id": 90, "reference": res.data["reference"], "transfer_code": "TRF_x"}})
    assert svc.payments.handle_paystack_event(raw, sig).ok
    txn = Transaction.query.filter_by(kind="withdrawal").one()
    assert txn.status == "completed"
    assert txn.gateway_reference == "TRF_x"
    assert _balance(seller) == Decimal("4000")


def test_wallet_lists_ledger_entries(svc, seller):
    svc.withdrawals.withdraw(seller.id, "1000", "1234")
    res = svc.withdrawals.wallet(seller.id)
    assert res.ok
    assert res.data["balance"] == 4000.0
    assert [t["kind"] for t in res.data["recent"]] == ["withdrawal"]
