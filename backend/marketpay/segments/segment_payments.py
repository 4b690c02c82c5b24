from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from marketpay.errors import respond
from marketpay.services import services
from marketpay.utils.idempotency import claim_key, remember

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/payments")


@payments_bp.post("/initialize")
@login_required
def initialize_payment():
    data = request.get_json(silent=True) or {}
    try:
        order_id = int(data.get("order_id"))
    except (TypeError, ValueError):
        return jsonify({"ok": False, "message": "order_id is required", "error": "validation"}), 400

    claim = claim_key(int(current_user.id), "payments.initialize", data)
    if claim and claim.replay:
        return jsonify(claim.body), claim.status

    result = services().payments.initiate_order_payment(order_id, int(current_user.id))
    if claim:
        remember(claim, result)
    return respond(result)


@payments_bp.post("/verify")
@login_required
def verify_payment():
    data = request.get_json(silent=True) or {}
    reference = (data.get("reference") or request.args.get("reference") or "").strip()
    if not reference:
        return jsonify({"ok": False, "message": "reference is required", "error": "validation"}), 400
    return respond(services().payments.verify_payment(reference, int(current_user.id)))


@payments_bp.post("/webhook/paystack")
def paystack_webhook():
    raw = request.get_data() or b""
    sig = request.headers.get("X-Paystack-Signature")
    return respond(services().payments.handle_paystack_event(raw, sig))
