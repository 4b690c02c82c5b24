"""Seller withdrawals and payout recipient onboarding.

The balance is debited before the transfer call and the debit is committed,
so the money can never be paid out twice. A definitive gateway error puts it
back; a timeout leaves the withdrawal pending until a transfer webhook says
how it ended.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app

from marketpay.errors import (
    Forbidden,
    GatewayError,
    GatewayTimeout,
    InsufficientBalance,
    NotFound,
    Result,
    ValidationError,
    returns_result,
)
from marketpay.extensions import db
from marketpay.models import PayoutRecipient, Transaction, User
from marketpay.utils.balances import credit_balance, debit_balance, record_txn
from marketpay.utils.notify import notify_user
from marketpay.utils.references import withdrawal_reference
from marketpay.utils.settlement import to_money
from marketpay.utils.transitions import compare_and_set


def _now():
    return datetime.utcnow()


def _clean_account(account_number, bank_code) -> tuple[str, str]:
    acct = str(account_number or "").strip()
    bank = str(bank_code or "").strip()
    if not (acct.isdigit() and len(acct) == 10):
        raise ValidationError("account_number must be a 10 digit NUBAN")
    if not bank:
        raise ValidationError("bank_code is required")
    return acct, bank


class WithdrawalService:
    def __init__(self, gateway):
        self.gateway = gateway

    def _user(self, user_id: int) -> User:
        user = db.session.get(User, int(user_id))
        if not user:
            raise NotFound("User not found")
        return user

    def _upsert_recipient(self, user: User, account_number: str, bank_code: str) -> PayoutRecipient:
        created = self.gateway.create_recipient(account_number, bank_code)
        now = _now()
        row = PayoutRecipient.query.filter_by(user_id=user.id).first()
        if not row:
            row = PayoutRecipient(user_id=user.id, created_at=now)
            db.session.add(row)
        row.provider = getattr(self.gateway, "provider", "paystack")
        row.recipient_code = created["recipient_code"]
        row.account_number = account_number
        row.bank_code = bank_code
        row.account_name = (created.get("account_name") or "")[:120] or None
        row.bank_name = (created.get("bank_name") or "")[:120] or None
        row.updated_at = now
        return row

    @returns_result
    def get_recipient(self, user_id: int) -> Result:
        self._user(user_id)
        row = PayoutRecipient.query.filter_by(user_id=int(user_id)).first()
        return Result.success("Payout recipient fetched", recipient=row.to_dict() if row else None)

    @returns_result
    def set_recipient(self, user_id: int, account_number, bank_code) -> Result:
        user = self._user(user_id)
        acct, bank = _clean_account(account_number, bank_code)
        row = self._upsert_recipient(user, acct, bank)
        db.session.commit()
        current_app.logger.info("payout recipient saved user_id=%s bank=%s", user.id, bank)
        return Result.success("Bank details saved", recipient=row.to_dict())

    @returns_result
    def wallet(self, user_id: int) -> Result:
        user = self._user(user_id)
        recent = (
            Transaction.query.filter_by(user_id=user.id)
            .filter(Transaction.kind != "order_payment")
            .order_by(Transaction.id.desc())
            .limit(20)
            .all()
        )
        return Result.success(
            "Wallet fetched",
            pending_balance=float(user.pending_balance or 0),
            balance=float(user.balance or 0),
            recent=[t.to_dict() for t in recent],
        )

    @returns_result
    def withdraw(self, user_id: int, amount, pin: str, account_number=None, bank_code=None) -> Result:
        user = self._user(user_id)
        try:
            amt = to_money(amount)
        except ArithmeticError:
            raise ValidationError("amount must be a number")
        if not amt.is_finite():
            raise ValidationError("amount must be a number")
        if amt <= 0:
            raise ValidationError("amount must be greater than zero")

        if not user.pin_hash:
            raise Forbidden("Set a withdrawal PIN first")
        if not user.check_pin(str(pin or "")):
            raise Forbidden("Invalid PIN")

        recipient = PayoutRecipient.query.filter_by(user_id=user.id).first()
        if account_number or bank_code:
            acct, bank = _clean_account(account_number, bank_code)
            if not recipient:
                recipient = self._upsert_recipient(user, acct, bank)
            elif (recipient.account_number, recipient.bank_code) != (acct, bank):
                # changing the payout account goes through set_recipient
                raise ValidationError("Account details do not match your saved payout account")
        if not recipient:
            raise ValidationError("Add your bank details before withdrawing")

        if not debit_balance(user.id, amt):
            raise InsufficientBalance("Insufficient balance")

        ref = withdrawal_reference()
        txn = record_txn(
            user_id=user.id,
            kind="withdrawal",
            direction="debit",
            amount=amt,
            reference=ref,
            description=f"Withdrawal to {recipient.masked_account()}",
            status="pending",
        )
        db.session.commit()

        try:
            transfer = self.gateway.transfer_payout(recipient.recipient_code, amt, "Marketplace earnings withdrawal", ref)
        except GatewayTimeout:
            current_app.logger.warning("transfer timed out ref=%s; awaiting webhook", ref)
            return Result.success("Withdrawal is processing", 202, transaction_id=txn.id, reference=ref, status="pending")
        except GatewayError as e:
            current_app.logger.error("transfer failed ref=%s: %s", ref, e.message)
            if compare_and_set(Transaction, txn.id, expected={"status": "pending"}, values={"status": "failed", "updated_at": _now()}):
                credit_balance(user.id, amt)
            db.session.commit()
            raise

        now = _now()
        compare_and_set(
            Transaction,
            txn.id,
            expected={"status": "pending"},
            values={"status": "completed", "gateway_reference": (transfer.get("transfer_id") or "")[:128], "updated_at": now},
        )
        db.session.commit()
        current_app.logger.info("withdrawal sent ref=%s user_id=%s amount=%s", ref, user.id, amt)
        notify_user(
            user.id,
            "Withdrawal sent",
            f"₦{amt} is on its way to {recipient.masked_account()}.",
            meta={"reference": ref, "transaction_id": txn.id},
        )
        return Result.success("Withdrawal successful", transaction_id=txn.id, reference=ref, status="completed")

    @returns_result
    def handle_transfer_event(self, event_type: str, data: dict) -> Result:
        reference = str((data or {}).get("reference") or "").strip()
        txn = Transaction.query.filter_by(reference_id=reference, kind="withdrawal").first() if reference else None
        if not txn:
            current_app.logger.warning("%s for unknown withdrawal %s", event_type, reference)
            return Result.success("Event ignored", ignored=True)

        now = _now()
        if event_type == "transfer.success":
            compare_and_set(
                Transaction,
                txn.id,
                expected={"status": "pending"},
                values={"status": "completed", "gateway_reference": str(data.get("transfer_code") or "")[:128] or txn.gateway_reference, "updated_at": now},
            )
            db.session.commit()
            return Result.success("Withdrawal confirmed", transaction_id=txn.id, status=txn.status)

        # transfer.failed / transfer.reversed: the money comes back exactly once
        if not compare_and_set(Transaction, txn.id, expected={"status": ("pending", "completed")}, values={"status": "failed", "updated_at": now}):
            return Result.success("Event ignored", ignored=True, transaction_id=txn.id)
        credit_balance(txn.user_id, txn.amount)
        db.session.commit()
        current_app.logger.warning("withdrawal %s %s; balance restored", reference, event_type)
        notify_user(
            txn.user_id,
            "Withdrawal failed",
            f"Your withdrawal of ₦{to_money(txn.amount)} could not be completed and was returned to your balance.",
            meta={"reference": reference, "transaction_id": txn.id},
        )
        return Result.success("Withdrawal reversed", transaction_id=txn.id, status="failed")
