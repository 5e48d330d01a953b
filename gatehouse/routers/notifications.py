from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gatehouse.auth import Principal, get_current_principal
from gatehouse.db import get_db
from gatehouse.models import Notification
from gatehouse.schemas import MarkReadRequest
from gatehouse.services.notification_service import serialize_notification

router = APIRouter(prefix='/notifications', tags=['notifications'])

NOTIFICATION_PAGE_SIZE = 50


@router.get('')
def list_notifications(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    rows = db.execute(
        select(Notification)
        .where(Notification.user_id == principal.id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(NOTIFICATION_PAGE_SIZE)
    ).scalars().all()
    return [serialize_notification(row) for row in rows]


@router.post('/mark-read')
def mark_read(
    body: MarkReadRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    if body.notification_ids:
        db.execute(
            update(Notification)
            .where(Notification.id.in_(body.notification_ids), Notification.user_id == principal.id)
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    return {'message': 'Notifications marked as read'}
