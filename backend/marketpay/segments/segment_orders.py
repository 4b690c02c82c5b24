from __future__ import annotations

from flask import Blueprint, request
from flask_login import current_user, login_required

from marketpay.errors import respond
from marketpay.services import services

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api/orders")


@orders_bp.post("/checkout")
@login_required
def checkout():
    data = request.get_json(silent=True) or {}
    result = services().payments.checkout(
        int(current_user.id),
        data.get("product_ids"),
        delivery_type=data.get("delivery_type") or "pickup",
        delivery_address=data.get("delivery_address") or "",
    )
    return respond(result)
