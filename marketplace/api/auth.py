from datetime import datetime, timedelta, timezone
import jwt
from typing import Optional
from fastapi import Depends, HTTPException, Request

from marketplace.application.schemas import Actor
from marketplace.core_settings import get_settings
from marketplace.domain.errors import Forbidden
from marketplace.domain.status import Role
from shared.core import set_request_context

settings = get_settings()

BEARER_PREFIX = "Bearer "


def create_access_token(user_id: int, role: str, expires_minutes: int = 60) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": Role(role).value,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None


def _actor_from(token_data: dict) -> Optional[Actor]:
    try:
        return Actor(id=int(token_data["sub"]), role=token_data["role"])
    except (KeyError, TypeError, ValueError):
        return None


def optional_user(request: Request) -> Optional[Actor]:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        return None
    token_data = decode_access_token(auth_header.split(" ", 1)[1])
    actor = _actor_from(token_data) if token_data else None
    if actor is not None:
        set_request_context(user_id=str(actor.id))
    return actor


def current_user(request: Request) -> Actor:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    actor = optional_user(request)
    if actor is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return actor


def require_roles(*roles: Role):
    allowed = {Role(r) for r in roles}

    def dependency(actor: Actor = Depends(current_user)) -> Actor:
        if actor.role not in allowed:
            raise Forbidden("Insufficient permissions")
        return actor

    return dependency
