from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from gatehouse.db import get_db
from gatehouse.dependencies import get_dispatcher, get_presence
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.schemas import LoginRequest, RegisterRequest
from gatehouse.security.sessions import create_access_token
from gatehouse.services.account_service import authenticate, register_user
from gatehouse.services.notification_service import NotificationDispatcher

router = APIRouter(prefix='/auth', tags=['auth'])


def _user_payload(user) -> dict:
    return {
        'id': user.id,
        'name': user.name,
        'phone': user.phone,
        'role': user.role.value,
        'apartment_id': user.apartment_id,
        'flat_id': user.flat_id,
        'is_approved': user.is_approved,
    }


@router.post('/register', status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    presence: PresenceRegistry = Depends(get_presence),
):
    try:
        user = register_user(
            db,
            name=body.name,
            phone=body.phone,
            password=body.password,
            role=body.role,
            apartment_id=body.apartment_id,
            flat_id=body.flat_id,
            block_id=body.block_id,
            dispatcher=dispatcher,
            presence=presence,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    suffix = 'Awaiting admin approval.' if not user.is_approved else 'Account created.'
    return {'message': f'Registration successful. {suffix}', 'user': _user_payload(user)}


@router.post('/login')
def login(body: LoginRequest, db: Session = Depends(get_db)):
    try:
        user = authenticate(db, phone=body.phone, password=body.password)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc

    return {'token': create_access_token(user), 'user': _user_payload(user)}
