from __future__ import annotations

import functools

from flask import jsonify
from flask_login import current_user, login_required

from marketpay.extensions import db, login_manager
from marketpay.models import User
from marketpay.utils.jwt_utils import actor_id_from_header


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.request_loader
def load_user_from_request(req):
    """Allow @login_required to work with Bearer tokens."""
    user_id = actor_id_from_header(req.headers.get("Authorization", ""))
    return db.session.get(User, user_id) if user_id is not None else None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"ok": False, "message": "Unauthorized", "error": "unauthorized"}), 401


def admin_required(fn):
    @functools.wraps(fn)
    @login_required
    def wrapper(*args, **kwargs):
        if not current_user.is_admin:
            return jsonify({"ok": False, "message": "Admin access required", "error": "forbidden"}), 403
        return fn(*args, **kwargs)

    return wrapper
