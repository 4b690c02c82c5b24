from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user

from marketpay.auth import admin_required
from marketpay.errors import respond
from marketpay.extensions import db
from marketpay.jobs.ledger_reconciler import reconcile_ledger
from marketpay.jobs.scheduler import JOBS, run_job
from marketpay.models import AuditLog
from marketpay.segments.segment_transactions import list_filters
from marketpay.services import services

admin_txn_bp = Blueprint("admin_txn_bp", __name__, url_prefix="/api/admin")


@admin_txn_bp.get("/transactions")
@admin_required
def list_transactions():
    filters = list_filters()
    if request.args.get("user_id"):
        filters["user_id"] = request.args.get("user_id")
    result = services().transactions.list_all_transactions(
        int(current_user.id),
        filters,
        page=request.args.get("page", 1),
        limit=request.args.get("limit", 10),
    )
    return respond(result)


@admin_txn_bp.get("/refunds")
@admin_required
def list_refunds():
    result = services().transactions.list_refund_requests(
        int(current_user.id),
        refund_status=request.args.get("refund_status") or "",
        page=request.args.get("page", 1),
        limit=request.args.get("limit", 10),
    )
    return respond(result)


@admin_txn_bp.get("/transactions/<int:transaction_id>/refund-history")
@admin_required
def refund_history(transaction_id: int):
    return respond(services().refunds.refund_history(transaction_id, int(current_user.id)))


@admin_txn_bp.post("/transactions/<int:transaction_id>/refund")
@admin_required
def decide_refund(transaction_id: int):
    data = request.get_json(silent=True) or {}
    result = services().refunds.decide_refund(
        transaction_id,
        int(current_user.id),
        data.get("action") or "",
        data.get("notes") or "",
    )
    if result.ok:
        AuditLog.record(
            f"refund_{(data.get('action') or '').strip().lower()}",
            "transaction",
            transaction_id,
            actor_id=current_user.id,
            refund_status=result.data.get("refund_status"),
        )
        db.session.commit()
    return respond(result)


@admin_txn_bp.post("/transactions/<int:transaction_id>/refund/retry")
@admin_required
def retry_refund(transaction_id: int):
    return respond(services().refunds.retry_refund(transaction_id, int(current_user.id)))


@admin_txn_bp.post("/jobs/<name>")
@admin_required
def trigger_job(name: str):
    summary = run_job(name)
    if summary is None:
        return jsonify({"ok": False, "message": f"Unknown job: {name}", "jobs": sorted(JOBS)}), 404
    return jsonify({"ok": True, "job": name, "summary": summary}), 200


@admin_txn_bp.post("/ledger/reconcile")
@admin_required
def reconcile():
    limit = request.args.get("limit", 500)
    try:
        limit = max(int(limit), 1)
    except (TypeError, ValueError):
        return jsonify({"ok": False, "message": "limit must be an integer", "error": "validation"}), 400
    return jsonify({"ok": True, "summary": reconcile_ledger(limit=limit)}), 200
