"""Seller balance primitives.

Each helper is a single conditional UPDATE evaluated by the database so two
workers never read-modify-write the same balance. Callers own the commit.
Decrements only apply while the balance covers the amount; the return value
says whether the row changed.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import update

from marketpay.extensions import db
from marketpay.models import Transaction, User
from marketpay.utils.settlement import to_money


def _update(user_id: int, values: dict, *conditions) -> bool:
    res = db.session.execute(
        update(User)
        .where(User.id == int(user_id), *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def credit_pending(user_id: int, amount) -> bool:
    amt = to_money(amount)
    if amt <= 0:
        return False
    return _update(user_id, {"pending_balance": User.pending_balance + amt})


def release_pending(user_id: int, amount) -> bool:
    """Move escrowed earnings into the withdrawable balance."""
    amt = to_money(amount)
    if amt <= 0:
        return False
    return _update(
        user_id,
        {"pending_balance": User.pending_balance - amt, "balance": User.balance + amt},
        User.pending_balance >= amt,
    )


def clawback_pending(user_id: int, amount) -> bool:
    amt = to_money(amount)
    if amt <= 0:
        return False
    return _update(user_id, {"pending_balance": User.pending_balance - amt}, User.pending_balance >= amt)


def credit_balance(user_id: int, amount) -> bool:
    amt = to_money(amount)
    if amt <= 0:
        return False
    return _update(user_id, {"balance": User.balance + amt})


def debit_balance(user_id: int, amount) -> bool:
    amt = to_money(amount)
    if amt <= 0:
        return False
    return _update(user_id, {"balance": User.balance - amt}, User.balance >= amt)


def record_txn(
    *,
    user_id: int,
    kind: str,
    direction: str,
    amount,
    reference: str,
    description: str = "",
    order_id: int | None = None,
    status: str = "completed",
) -> Transaction:
    """Add a ledger row to the session; unique reference_id keeps it one-per-reference."""
    now = datetime.utcnow()
    txn = Transaction(
        reference_id=reference,
        order_id=order_id,
        user_id=int(user_id),
        kind=kind,
        transaction_type=direction,
        status=status,
        amount=to_money(amount),
        total_amount=to_money(amount),
        description=(description or "")[:255],
        transaction_date=now,
        created_at=now,
        updated_at=now,
    )
    db.session.add(txn)
    return txn
