from __future__ import annotations

from flask import Blueprint, request
from flask_login import current_user, login_required

from marketpay.errors import respond
from marketpay.services import services

wallets_bp = Blueprint("wallets_bp", __name__, url_prefix="/api")


@wallets_bp.get("/wallet")
@login_required
def get_wallet():
    return respond(services().withdrawals.wallet(int(current_user.id)))


@wallets_bp.post("/wallet/withdraw")
@login_required
def withdraw():
    data = request.get_json(silent=True) or {}
    result = services().withdrawals.withdraw(
        int(current_user.id),
        data.get("amount"),
        data.get("pin") or "",
        account_number=data.get("account_number"),
        bank_code=data.get("bank_code"),
    )
    return respond(result)


@wallets_bp.get("/referrals")
@login_required
def referrals():
    result = services().transactions.referral_summary(
        int(current_user.id),
        page=request.args.get("page", 1),
        limit=request.args.get("limit", 10),
    )
    return respond(result)
