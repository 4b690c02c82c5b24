from marketpay.utils.references import (
    PaymentReference,
    clawback_reference,
    escrow_release_reference,
    referral_reward_reference,
    withdrawal_reference,
)


def test_first_attempt_has_no_suffix():
    assert str(PaymentReference(order_id=42)) == "order_42"
    assert str(PaymentReference(order_id=42, attempt=2)) == "order_42_2"


def test_parse():
    ref = PaymentReference.parse("order_42_3")
    assert ref.order_id == 42
    assert ref.attempt == 3
    assert PaymentReference.parse("txn_7").order_id == 7


def test_parse_rejects_foreign_references():
    assert PaymentReference.parse("WD_abc") is None
    assert PaymentReference.parse("order_x") is None
    assert PaymentReference.parse("") is None


def test_ledger_references():
    assert escrow_release_reference(5) == "ESC_5"
    assert referral_reward_reference(5) == "REF_5"
    assert clawback_reference(5) == "CB_5"
    assert withdrawal_reference().startswith("WD_")
    assert withdrawal_reference() != withdrawal_reference()
