from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from jose import JWTError, jwt

from gatehouse.auth import Principal, Role
from gatehouse.config import settings
from gatehouse.models import User

logger = logging.getLogger(__name__)

BEARER_PREFIX = 'bearer '


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def create_access_token(user: User) -> str:
    role = user.role.value if hasattr(user.role, 'value') else user.role
    claims = {
        'sub': str(user.id),
        'role': role,
        'flat_id': user.flat_id,
        'apartment_id': user.apartment_id,
        'exp': _now() + timedelta(minutes=settings.access_token_ttl_minutes),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def load_principal_from_token(token: str | None) -> Principal | None:
    if not token:
        return None

    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return Principal(
            id=int(claims['sub']),
            role=Role(claims['role']),
            flat_id=claims.get('flat_id'),
            apartment_id=claims.get('apartment_id'),
        )
    except (JWTError, KeyError, TypeError, ValueError):
        logger.debug('Rejected access token')
        return None


def bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX) :].strip() or None


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = bearer_token(request.headers.get('authorization'))
        request.state.principal = load_principal_from_token(token)
        return await call_next(request)
