from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from gatehouse.auth import Principal, get_current_principal
from gatehouse.db import get_db
from gatehouse.schemas import PushRegisterRequest, PushUnregisterRequest
from gatehouse.services.push_token_service import register_token, unregister_token

router = APIRouter(prefix='/fcm', tags=['push'])


@router.post('/register')
def register_push_token(
    body: PushRegisterRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    if not body.token:
        raise HTTPException(status_code=400, detail='Token is required')
    try:
        register_token(db, user_id=principal.id, token=body.token, device_type=body.device_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {'message': 'Token registered successfully'}


@router.post('/unregister')
def unregister_push_token(
    body: PushUnregisterRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    if not body.token:
        raise HTTPException(status_code=400, detail='Token is required')
    unregister_token(db, token=body.token)
    return {'message': 'Token unregistered successfully'}
