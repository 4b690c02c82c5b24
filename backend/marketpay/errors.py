"""Settlement error taxonomy and the tagged result returned by services.

Services raise these internally; every public service method is wrapped by
`returns_result` so callers receive a `Result` instead of an exception.
Blueprints turn a `Result` into a JSON response with `respond`.
"""
from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Any

from flask import jsonify

from marketpay.extensions import db


class SettlementError(Exception):
    status_code = 400
    kind = "error"

    def __init__(self, message: str = "", **data: Any):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.data = data


class ValidationError(SettlementError):
    kind = "validation"


class InvalidTransactionState(SettlementError):
    kind = "invalid_state"

    def __init__(self, message: str = "", state: str | None = None, **data: Any):
        super().__init__(message or f"Invalid transaction state: {state}", state=state, **data)
        self.state = state


class RefundIneligible(SettlementError):
    kind = "refund_ineligible"


class InsufficientBalance(SettlementError):
    kind = "insufficient_balance"


class PaymentAmountMismatch(SettlementError):
    status_code = 409
    kind = "amount_mismatch"


class Unauthorized(SettlementError):
    status_code = 401
    kind = "unauthorized"


class Forbidden(SettlementError):
    status_code = 403
    kind = "forbidden"


class NotFound(SettlementError):
    status_code = 404
    kind = "not_found"


class GatewayError(SettlementError):
    status_code = 502
    kind = "gateway_error"


class GatewayTimeout(GatewayError):
    status_code = 504
    kind = "gateway_timeout"


class InsufficientGatewayBalance(GatewayError):
    kind = "gateway_insufficient_balance"


class InvalidRecipient(GatewayError):
    status_code = 400
    kind = "invalid_recipient"


@dataclass
class Result:
    ok: bool
    message: str = ""
    data: dict = field(default_factory=dict)
    kind: str = "ok"
    status_code: int = 200

    @classmethod
    def success(cls, message: str = "", status_code: int = 200, **data: Any) -> "Result":
        return cls(ok=True, message=message, data=data, status_code=status_code)

    @classmethod
    def failure(cls, err: SettlementError) -> "Result":
        return cls(ok=False, message=err.message, data=dict(err.data), kind=err.kind, status_code=err.status_code)

    def to_dict(self) -> dict:
        out = {"ok": self.ok, "message": self.message}
        if not self.ok:
            out["error"] = self.kind
        out.update(self.data)
        return out


def returns_result(fn):
    """Convert SettlementError raised by a service method into a failed Result."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SettlementError as e:
            db.session.rollback()
            return Result.failure(e)

    return wrapper


def respond(result: Result):
    return jsonify(result.to_dict()), result.status_code
