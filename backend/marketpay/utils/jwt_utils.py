"""Bearer access tokens. Only the subject (user id) is trusted by the API."""
from __future__ import annotations

import time
from typing import Optional

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"


def create_access_token(user_id: int, ttl_seconds: Optional[int] = None) -> str:
    ttl = int(ttl_seconds if ttl_seconds is not None else current_app.config.get("JWT_ACCESS_TTL_SECONDS", 7 * 24 * 3600))
    now = int(time.time())
    claims = {"sub": str(int(user_id)), "iat": now, "exp": now + ttl, "type": TOKEN_TYPE}
    return jwt.encode(claims, current_app.config["SECRET_KEY"], algorithm=ALGORITHM)


def actor_id_from_header(auth_header: str) -> Optional[int]:
    """User id from an ``Authorization: Bearer <token>`` header, or None."""
    scheme, _, token = (auth_header or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        claims = jwt.decode(token.strip(), current_app.config["SECRET_KEY"], algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        return None
    if claims.get("type") != TOKEN_TYPE:
        return None
    try:
        return int(claims.get("sub"))
    except (TypeError, ValueError):
        return None
