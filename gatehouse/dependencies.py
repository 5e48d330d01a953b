from fastapi import Depends, Request
from sqlalchemy.orm import Session

from gatehouse.db import get_db
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.services.notification_service import NotificationDispatcher
from gatehouse.services.push_gateway import PushGateway


def get_presence(request: Request) -> PresenceRegistry:
    return request.app.state.presence


def get_push_gateway(request: Request) -> PushGateway:
    return request.app.state.push_gateway


def get_dispatcher(
    db: Session = Depends(get_db),
    presence: PresenceRegistry = Depends(get_presence),
    gateway: PushGateway = Depends(get_push_gateway),
) -> NotificationDispatcher:
    return NotificationDispatcher(db, presence=presence, gateway=gateway)
