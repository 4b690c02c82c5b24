"""Idempotency-Key replay for client-retried POSTs.

The first request with a key claims it; a repeat with the same body gets the
stored response back without touching the gateway again.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Optional

from flask import request
from sqlalchemy.exc import IntegrityError

from marketpay.errors import Result
from marketpay.extensions import db
from marketpay.models import IdempotencyKey

KEY_HEADERS = ("Idempotency-Key", "X-Idempotency-Key")


@dataclass
class Claim:
    row: Optional[IdempotencyKey] = None
    body: Optional[dict] = None
    status: int = 0

    @property
    def replay(self) -> bool:
        return self.body is not None


def _fingerprint(route: str, payload: Any) -> str:
    raw = json.dumps({"route": route, "body": payload}, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _header_key() -> Optional[str]:
    for name in KEY_HEADERS:
        k = (request.headers.get(name) or "").strip()
        if k:
            return k[:128]
    return None


def _refuse(message: str) -> Claim:
    return Claim(body={"ok": False, "message": message, "error": "idempotency_conflict"}, status=409)


def claim_key(user_id: int, route: str, payload: Any) -> Optional[Claim]:
    """None when the request carries no key."""
    key = _header_key()
    if not key:
        return None

    fp = _fingerprint(route, payload)
    row = IdempotencyKey.query.filter_by(key=key).first()
    if row:
        if not row.matches(user_id, fp):
            return _refuse("Idempotency key reuse with different payload")
        if not row.completed:
            return _refuse("Request with this idempotency key is in progress")
        return Claim(row=row, body=json.loads(row.response_json), status=int(row.status_code))

    row = IdempotencyKey(key=key, user_id=int(user_id), route=route, request_hash=fp)
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return _refuse("Request with this idempotency key is in progress")
    return Claim(row=row)


def remember(claim: Claim, result: Result) -> None:
    claim.row.response_json = json.dumps(result.to_dict(), default=str)
    claim.row.status_code = int(result.status_code)
    db.session.commit()
