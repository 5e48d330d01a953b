from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from gatehouse.auth import Principal, Role, require_role
from gatehouse.db import get_db
from gatehouse.dependencies import get_dispatcher, get_presence
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.schemas import CheckInRequest
from gatehouse.services.notification_service import NotificationDispatcher
from gatehouse.services.ticket_service import InvalidTicket
from gatehouse.services.visit_service import check_in, list_visit_log

router = APIRouter(prefix='/visits', tags=['visits'])


@router.post('/check-in')
def check_in_guest(
    body: CheckInRequest,
    principal: Principal = Depends(require_role(Role.SECURITY)),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    presence: PresenceRegistry = Depends(get_presence),
):
    try:
        result = check_in(db, security=principal, qr_token=body.qr_token, dispatcher=dispatcher, presence=presence)
    except InvalidTicket as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {'message': 'Check-in successful', 'guestName': result.guest_name, 'flatNumber': result.flat_number}


@router.get('')
def visit_log(
    filter_by: str | None = Query(None, alias='filter'),
    status: str | None = None,
    search: str | None = None,
    principal: Principal = Depends(require_role(Role.SECURITY, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    try:
        return list_visit_log(db, actor=principal, filter_by=filter_by, status=status, search=search)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
