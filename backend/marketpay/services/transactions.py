"""Read side: transaction listings, refund queues and referral summaries."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from marketpay.errors import Result, ValidationError, returns_result
from marketpay.extensions import db
from marketpay.models import Transaction, User
from marketpay.models.transaction import REFUND_STATUSES, TRANSACTION_STATUSES
from marketpay.services.refunds import require_admin

MAX_PAGE_SIZE = 100


def _page_args(page, limit) -> tuple[int, int]:
    try:
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 10), 1), MAX_PAGE_SIZE)
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    return page, limit


def _parse_date(raw, name: str):
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).strip())
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date")


def paginated(page: int, limit: int, total: int, items: list) -> dict:
    return {
        "items": items,
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if limit else 0,
    }


class TransactionQueryService:
    def _filtered(self, filters: dict):
        q = Transaction.query
        status = (filters.get("status") or "").strip().lower()
        if status:
            if status not in TRANSACTION_STATUSES:
                raise ValidationError(f"Unknown status: {status}")
            q = q.filter(Transaction.status == status)
        ttype = (filters.get("transaction_type") or "").strip().lower()
        if ttype:
            if ttype not in ("credit", "debit"):
                raise ValidationError("transaction_type must be credit or debit")
            q = q.filter(Transaction.transaction_type == ttype)
        kind = (filters.get("kind") or "").strip().lower()
        if kind:
            q = q.filter(Transaction.kind == kind)
        start = _parse_date(filters.get("start_date"), "start_date")
        if start:
            q = q.filter(Transaction.transaction_date >= start)
        end = _parse_date(filters.get("end_date"), "end_date")
        if end:
            q = q.filter(Transaction.transaction_date <= end)
        return q

    def _page(self, q, page, limit, message: str) -> Result:
        page, limit = _page_args(page, limit)
        total = q.count()
        if (page - 1) * limit >= total:
            return Result.success("No transactions on this page", data=paginated(page, limit, total, []))
        rows = q.order_by(Transaction.created_at.desc(), Transaction.id.desc()).offset((page - 1) * limit).limit(limit).all()
        return Result.success(message, data=paginated(page, limit, total, [t.to_dict() for t in rows]))

    @returns_result
    def list_user_transactions(self, user_id: int, filters: dict | None = None, page=1, limit=10) -> Result:
        q = self._filtered(filters or {}).filter(Transaction.user_id == int(user_id))
        return self._page(q, page, limit, "Transactions fetched successfully")

    @returns_result
    def list_all_transactions(self, admin_id: int, filters: dict | None = None, page=1, limit=10) -> Result:
        require_admin(admin_id)
        filters = filters or {}
        q = self._filtered(filters)
        if filters.get("user_id"):
            try:
                q = q.filter(Transaction.user_id == int(filters["user_id"]))
            except (TypeError, ValueError):
                raise ValidationError("user_id must be an integer")
        return self._page(q, page, limit, "Transactions fetched successfully")

    @returns_result
    def list_refund_requests(self, admin_id: int, refund_status: str = "", page=1, limit=10) -> Result:
        require_admin(admin_id)
        q = Transaction.query.filter(Transaction.refund_requested_at.isnot(None))
        refund_status = (refund_status or "").strip().lower()
        if refund_status:
            if refund_status not in REFUND_STATUSES:
                raise ValidationError(f"Unknown refund status: {refund_status}")
            q = q.filter(Transaction.refund_status == refund_status)
        page, limit = _page_args(page, limit)
        total = q.count()
        rows = q.order_by(Transaction.refund_requested_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return Result.success("Refund requests fetched", data=paginated(page, limit, total, [t.refund_dict() for t in rows]))

    @returns_result
    def referral_summary(self, user_id: int, page=1, limit=10) -> Result:
        page, limit = _page_args(page, limit)
        q = User.query.filter(User.referred_by_id == int(user_id))
        total = q.count()
        referred = q.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()

        earned = (
            db.session.query(func.coalesce(func.sum(Transaction.amount), 0))
            .filter(
                Transaction.user_id == int(user_id),
                Transaction.kind == "referral_reward",
                Transaction.status == "completed",
            )
            .scalar()
        )
        return Result.success(
            "Referrals fetched",
            referred_users=[
                {"id": u.id, "name": u.name, "email": u.email, "created_at": u.created_at.isoformat() if u.created_at else None}
                for u in referred
            ],
            total_count=total,
            total_rewards_earned=float(earned or 0),
            page=page,
            limit=limit,
        )
