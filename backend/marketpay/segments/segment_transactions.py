from __future__ import annotations

from flask import Blueprint, request
from flask_login import current_user, login_required

from marketpay.errors import respond
from marketpay.services import services

transactions_bp = Blueprint("transactions_bp", __name__, url_prefix="/api/transactions")

FILTER_ARGS = ("status", "transaction_type", "kind", "start_date", "end_date")


def list_filters() -> dict:
    return {k: request.args.get(k) for k in FILTER_ARGS if request.args.get(k)}


@transactions_bp.get("")
@login_required
def list_transactions():
    result = services().transactions.list_user_transactions(
        int(current_user.id),
        list_filters(),
        page=request.args.get("page", 1),
        limit=request.args.get("limit", 10),
    )
    return respond(result)


@transactions_bp.post("/<int:transaction_id>/refund")
@login_required
def request_refund(transaction_id: int):
    data = request.get_json(silent=True) or {}
    return respond(services().refunds.request_refund(transaction_id, int(current_user.id), data.get("reason") or ""))


@transactions_bp.get("/<int:transaction_id>/refund")
@login_required
def refund_status(transaction_id: int):
    return respond(services().refunds.refund_status(transaction_id, int(current_user.id)))
