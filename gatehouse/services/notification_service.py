"""Notification fan-out: one persisted row, then best-effort realtime and push delivery.

Persisting the row is the only thing a caller can rely on. Realtime and push
delivery failures are logged and swallowed so that the business transition
that triggered a notification never depends on who actually received it.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gatehouse.models import Notification, User
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.services.push_gateway import PushGateway
from gatehouse.services.push_token_service import deactivate_tokens, list_active_tokens

logger = logging.getLogger(__name__)

PUSH_TITLES = {
    'new_visitor': 'New Visitor',
    'visit_approved': 'Visitor Approved',
    'visit_rejected': 'Visitor Rejected',
    'new_user': 'New Registration',
    'user_approved': 'Account Approved',
    'pending_approval': 'Registration Received',
}
DEFAULT_PUSH_TITLE = 'New Notification'


def push_title_for(notification_type: str) -> str:
    return PUSH_TITLES.get(notification_type, DEFAULT_PUSH_TITLE)


def serialize_notification(notification: Notification) -> dict:
    return {
        'id': notification.id,
        'user_id': notification.user_id,
        'type': notification.type,
        'message': notification.message,
        'metadata': notification.meta or {},
        'is_read': notification.is_read,
        'created_at': notification.created_at,
    }


def _stringify(data: dict[str, Any]) -> dict[str, str]:
    # Push providers only carry string values.
    return {key: '' if value is None else str(value) for key, value in data.items()}


class NotificationDispatcher:
    def __init__(self, db: Session, *, presence: PresenceRegistry, gateway: PushGateway) -> None:
        self.db = db
        self.presence = presence
        self.gateway = gateway

    def dispatch(
        self,
        user_id: int | None,
        notification_type: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> Notification | None:
        if not user_id or not notification_type or not message:
            logger.warning('Skipping notification with missing recipient or content: user=%s type=%s', user_id, notification_type)
            return None

        try:
            exists = self.db.execute(select(User.id).where(User.id == user_id)).scalar_one_or_none()
            if not exists:
                logger.warning('Skipping %s notification for unknown user %s', notification_type, user_id)
                return None

            notification = Notification(
                user_id=user_id,
                type=notification_type,
                message=message,
                meta=dict(metadata or {}),
                is_read=False,
            )
            self.db.add(notification)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception('Failed to persist %s notification for user %s', notification_type, user_id)
            return None

        try:
            self.presence.send_to_user(user_id, 'notification', serialize_notification(notification))
        except Exception:
            logger.exception('Realtime delivery failed for notification %s', notification.id)

        self.push_to_user(
            user_id,
            title=push_title_for(notification_type),
            body=message,
            data={'type': notification_type, **(metadata or {}), 'notificationId': notification.id},
        )
        return notification

    def push_to_user(self, user_id: int, *, title: str, body: str, data: dict[str, Any] | None = None) -> int:
        """Deliver to every active push endpoint of a user; returns how many accepted it."""
        try:
            tokens = list_active_tokens(self.db, user_id=user_id)
            if not tokens:
                logger.debug('No active push tokens for user %s', user_id)
                return 0

            results = self.gateway.send_many(tokens, title=title, body=body, data=_stringify(data or {}))
            dead = [token for token, result in results.items() if result.permanent_failure]
            if dead:
                removed = deactivate_tokens(self.db, dead)
                logger.warning('Deactivated %s dead push token(s) for user %s', removed, user_id)
            return sum(1 for result in results.values() if result.success)
        except Exception:
            self.db.rollback()
            logger.exception('Push delivery failed for user %s', user_id)
            return 0

    def notify_new_visitor(self, resident_id: int, *, guest_name: str, flat_number: str, visit_id: int | None = None):
        metadata: dict[str, Any] = {'guestName': guest_name, 'flatNumber': flat_number}
        if visit_id is not None:
            metadata['visitId'] = visit_id
        return self.dispatch(
            resident_id,
            'new_visitor',
            f'New visitor {guest_name} has arrived at Flat {flat_number}',
            metadata,
        )

    def notify_visit_approved(self, security_id: int, *, guest_name: str, flat_number: str, visit_id: int | None = None):
        metadata: dict[str, Any] = {'guestName': guest_name, 'flatNumber': flat_number}
        if visit_id is not None:
            metadata['visitId'] = visit_id
        return self.dispatch(
            security_id,
            'visit_approved',
            f'Visit approved for {guest_name} at Flat {flat_number}',
            metadata,
        )

    def notify_visit_rejected(self, security_id: int, *, guest_name: str, flat_number: str, reason: str):
        return self.dispatch(
            security_id,
            'visit_rejected',
            f'Visit rejected for {guest_name} at Flat {flat_number}: {reason}',
            {'guestName': guest_name, 'flatNumber': flat_number, 'reason': reason},
        )

    def notify_new_resident(self, admin_id: int, *, user_id: int, user_name: str, phone: str, flat_label: str | None):
        return self.dispatch(
            admin_id,
            'new_user',
            f'New user registration: {user_name} ({phone})',
            {'userId': user_id, 'userName': user_name, 'phone': phone, 'flat': flat_label},
        )

    def notify_resident_approved(self, user_id: int, *, user_name: str, flat_label: str | None = None):
        return self.dispatch(
            user_id,
            'user_approved',
            f'Your account has been approved. Welcome {user_name}!',
            {'userName': user_name, 'flat': flat_label},
        )

    def notify_pending_approval(self, user_id: int, *, user_name: str):
        return self.dispatch(
            user_id,
            'pending_approval',
            f'Thanks {user_name}, your registration is awaiting admin approval.',
            {'userName': user_name},
        )
