from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from gatehouse.auth import Principal, Role, require_role
from gatehouse.db import get_db
from gatehouse.dependencies import get_dispatcher, get_presence
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.services.account_service import approve_resident, list_pending_residents, reject_resident
from gatehouse.services.notification_service import NotificationDispatcher

router = APIRouter(prefix='/admin', tags=['admin'])


@router.get('/pending-users')
def pending_users(
    _: Principal = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    return list_pending_residents(db)


@router.post('/approve-user/{user_id}')
def approve_user(
    user_id: int,
    _: Principal = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    presence: PresenceRegistry = Depends(get_presence),
):
    try:
        user = approve_resident(db, user_id=user_id, dispatcher=dispatcher, presence=presence)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        'message': 'User approved successfully',
        'user': {
            'id': user.id,
            'name': user.name,
            'phone': user.phone,
            'role': user.role.value,
            'flat_id': user.flat_id,
            'apartment_id': user.apartment_id,
            'is_approved': user.is_approved,
        },
    }


@router.delete('/reject-user/{user_id}')
def reject_user(
    user_id: int,
    _: Principal = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
    presence: PresenceRegistry = Depends(get_presence),
):
    try:
        reject_resident(db, user_id=user_id, presence=presence)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {'message': 'User rejected and deleted'}
