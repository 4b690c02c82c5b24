from __future__ import annotations

from flask import Blueprint, request
from flask_login import current_user, login_required

from marketpay.errors import respond
from marketpay.services import services

recipient_bp = Blueprint("recipient_bp", __name__, url_prefix="/api/payout/recipient")


@recipient_bp.get("")
@login_required
def get_recipient():
    return respond(services().withdrawals.get_recipient(int(current_user.id)))


@recipient_bp.post("")
@login_required
def set_recipient():
    data = request.get_json(silent=True) or {}
    return respond(services().withdrawals.set_recipient(int(current_user.id), data.get("account_number"), data.get("bank_code")))
