from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from gatehouse.config import settings
from gatehouse.models import PushToken, User
from gatehouse.services.concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_TYPE = 'web'


def _validate_token(token: str | None) -> str:
    clean = (token or '').strip()
    if len(clean) < settings.min_push_token_length:
        raise ValueError('Invalid push token')
    return clean


def _upsert(db: Session, *, user_id: int, token: str, device_type: str) -> PushToken:
    # One physical device has one current owner: release it from anyone else first.
    db.execute(
        update(PushToken)
        .where(PushToken.token == token, PushToken.user_id != user_id, PushToken.is_active.is_(True))
        .values(is_active=False, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    row = db.execute(lock_for_update(select(PushToken).where(PushToken.token == token))).scalar_one_or_none()
    if row:
        row.user_id = user_id
        row.device_type = device_type
        row.is_active = True
        row.updated_at = func.now()
    else:
        row = PushToken(user_id=user_id, token=token, device_type=device_type, is_active=True)
        db.add(row)
    db.flush()
    return row


def register_token(db: Session, *, user_id: int, token: str, device_type: str | None = None) -> PushToken:
    clean = _validate_token(token)
    exists = db.execute(select(User.id).where(User.id == user_id)).scalar_one_or_none()
    if not exists:
        raise ValueError('User not found')

    device = (device_type or DEFAULT_DEVICE_TYPE).strip() or DEFAULT_DEVICE_TYPE
    row = run_with_retry(db, lambda: _upsert(db, user_id=user_id, token=clean, device_type=device))
    logger.info('Registered push token for user %s (%s)', user_id, device)
    return row


def unregister_token(db: Session, *, token: str | None) -> bool:
    clean = (token or '').strip()
    if not clean:
        return True
    db.execute(
        update(PushToken)
        .where(PushToken.token == clean, PushToken.is_active.is_(True))
        .values(is_active=False, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return True


def deactivate_tokens(db: Session, tokens: list[str]) -> int:
    if not tokens:
        return 0
    result = db.execute(
        update(PushToken)
        .where(PushToken.token.in_(tokens), PushToken.is_active.is_(True))
        .values(is_active=False, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


def list_active_tokens(db: Session, *, user_id: int) -> list[str]:
    rows = db.execute(
        select(PushToken.token)
        .where(PushToken.user_id == user_id, PushToken.is_active.is_(True))
        .order_by(PushToken.id.asc())
    ).all()
    return [row[0] for row in rows]
