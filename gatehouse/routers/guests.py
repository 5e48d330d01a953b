from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from gatehouse.auth import Principal, Role, require_role
from gatehouse.db import get_db
from gatehouse.dependencies import get_dispatcher, get_presence
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.schemas import EditInviteRequest, InviteRequest, ManualSignInRequest
from gatehouse.services.notification_service import NotificationDispatcher
from gatehouse.services.visit_service import (
    GuestInfo,
    approve_manual,
    cancel_invite,
    edit_invite,
    invite_guest,
    list_invites,
    list_manual_pending,
    manual_signin,
    reject_manual,
)

router = APIRouter(prefix='/guests', tags=['guests'])


@router.post('', status_code=status.HTTP_201_CREATED)
def create_invite(
    body: InviteRequest,
    principal: Principal = Depends(require_role(Role.RESIDENT)),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    try:
        result = invite_guest(
            db,
            resident=principal,
            guest_info=GuestInfo(name=body.name, phone=body.phone),
            purpose=body.purpose,
            expected_arrival=body.expected_arrival,
            dispatcher=dispatcher,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return {
        'qr_token': result.qr_token,
        'guest': {'id': result.guest.id, 'name': result.guest.name, 'phone': result.guest.phone},
        'visit': {
            'id': result.visit.id,
            'purpose': result.visit.purpose,
            'expected_arrival': result.visit.expected_arrival,
            'status': result.visit.status.value,
        },
    }


@router.get('')
def get_invites(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    status: str | None = None,
    search: str | None = None,
    principal: Principal = Depends(require_role(Role.RESIDENT)),
    db: Session = Depends(get_db),
):
    try:
        return list_invites(db, resident=principal, limit=limit, offset=offset, status=status, search=search)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post('/manual', status_code=status.HTTP_201_CREATED)
def create_manual_signin(
    body: ManualSignInRequest,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    presence: PresenceRegistry = Depends(get_presence),
):
    try:
        visit = manual_signin(
            db,
            guest_info=GuestInfo(name=body.name, phone=body.phone),
            flat_id=body.flat_id,
            dispatcher=dispatcher,
            presence=presence,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return {'message': 'Manual sign-in request sent to resident for approval.', 'visitId': visit.id}


@router.get('/manual-pending')
def get_manual_pending(
    principal: Principal = Depends(require_role(Role.RESIDENT)),
    db: Session = Depends(get_db),
):
    try:
        return list_manual_pending(db, resident=principal)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.put('/{guest_id}')
def update_invite(
    guest_id: int,
    body: EditInviteRequest,
    principal: Principal = Depends(require_role(Role.RESIDENT)),
    db: Session = Depends(get_db),
):
    try:
        edit_invite(
            db,
            resident=principal,
            guest_id=guest_id,
            guest_info=GuestInfo(name=body.name, phone=body.phone),
            purpose=body.purpose,
            expected_arrival=body.expected_arrival,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {'message': 'Guest invite updated successfully'}


@router.delete('/{guest_id}')
def delete_invite(
    guest_id: int,
    principal: Principal = Depends(require_role(Role.RESIDENT)),
    db: Session = Depends(get_db),
):
    try:
        cancel_invite(db, resident=principal, guest_id=guest_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {'message': 'Guest invite cancelled successfully'}


@router.post('/{visit_id}/approve-manual')
def approve_manual_visitor(
    visit_id: int,
    principal: Principal = Depends(require_role(Role.RESIDENT)),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    presence: PresenceRegistry = Depends(get_presence),
):
    try:
        approve_manual(db, resident=principal, visit_id=visit_id, dispatcher=dispatcher, presence=presence)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {'message': 'Visitor approved and checked in.'}


@router.post('/{visit_id}/reject-manual')
def reject_manual_visitor(
    visit_id: int,
    principal: Principal = Depends(require_role(Role.RESIDENT)),
    db: Session = Depends(get_db),
    presence: PresenceRegistry = Depends(get_presence),
):
    try:
        reject_manual(db, resident=principal, visit_id=visit_id, presence=presence)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {'message': 'Visitor rejected.'}
