from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gatehouse.auth import Role
from gatehouse.config import settings
from gatehouse.models import Apartment, Block, Flat, User, UserRole
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.security.passwords import hash_password, verify_password
from gatehouse.services.notification_service import NotificationDispatcher
from gatehouse.services.visit_service import approved_user_ids

logger = logging.getLogger(__name__)


def _flat_label(db: Session, flat_id: int | None) -> str | None:
    if not flat_id:
        return None
    flat = db.execute(select(Flat).where(Flat.id == flat_id)).scalar_one_or_none()
    if not flat:
        return None
    return flat.unique_id or flat.number


def count_approved_occupants(db: Session, flat_id: int) -> int:
    return db.execute(
        select(func.count(User.id)).where(User.flat_id == flat_id, User.is_approved.is_(True))
    ).scalar_one()


def _ensure_flat_has_room(db: Session, flat_id: int, message: str) -> None:
    if count_approved_occupants(db, flat_id) >= settings.max_residents_per_flat:
        raise ValueError(message)


def register_user(
    db: Session,
    *,
    name: str,
    phone: str,
    password: str,
    role: str,
    apartment_id: int | None,
    flat_id: int | None,
    block_id: int | None,
    dispatcher: NotificationDispatcher,
    presence: PresenceRegistry,
) -> User:
    name = (name or '').strip()
    phone = (phone or '').strip()
    if not name or not phone or not password or not role:
        raise ValueError('All fields are required')
    try:
        user_role = UserRole(role)
    except ValueError as exc:
        raise ValueError('Invalid role') from exc

    if user_role == UserRole.RESIDENT:
        if not apartment_id:
            raise ValueError('Apartment selection is required')
        if not flat_id:
            raise ValueError('Flat selection is required')

    existing = db.execute(select(User.id).where(User.phone == phone)).scalar_one_or_none()
    if existing:
        raise ValueError('Phone number already registered')

    if apartment_id:
        apartment = db.execute(select(Apartment.id).where(Apartment.id == apartment_id)).scalar_one_or_none()
        if not apartment:
            raise ValueError('Invalid apartment selected')

    if flat_id:
        flat = db.execute(select(Flat).where(Flat.id == flat_id, Flat.apartment_id == apartment_id)).scalar_one_or_none()
        if not flat:
            raise ValueError('Invalid flat selected or flat does not belong to the selected apartment')
        if block_id and flat.block_id != block_id:
            raise ValueError('Selected block does not match the flat')
        _ensure_flat_has_room(db, flat_id, 'Flat already has maximum number of residents')

    user = User(
        name=name,
        phone=phone,
        password_hash=hash_password(password),
        role=user_role,
        apartment_id=apartment_id,
        flat_id=flat_id,
        is_approved=user_role != UserRole.RESIDENT,
    )
    db.add(user)
    db.commit()
    logger.info('Registered %s user %s', user_role.value, user.id)

    if user_role == UserRole.RESIDENT:
        flat_label = _flat_label(db, flat_id)
        try:
            for admin_id in approved_user_ids(db, UserRole.ADMIN):
                dispatcher.notify_new_resident(
                    admin_id, user_id=user.id, user_name=user.name, phone=user.phone, flat_label=flat_label
                )
            dispatcher.notify_pending_approval(user.id, user_name=user.name)
        except SQLAlchemyError:
            logger.exception('Failed to notify admins about registration of user %s', user.id)
        presence.broadcast_to_role(Role.ADMIN.value, 'refresh_pending_users')
    return user


def authenticate(db: Session, *, phone: str, password: str) -> User:
    user = db.execute(select(User).where(User.phone == (phone or '').strip())).scalar_one_or_none()
    if not verify_password(password or '', user.password_hash if user else None) or not user:
        raise ValueError('Invalid credentials')
    if not user.is_approved:
        raise PermissionError('Account pending approval')
    return user


def list_pending_residents(db: Session) -> list[dict]:
    rows = db.execute(
        select(User.id, User.name, User.phone, User.flat_id, User.apartment_id, User.created_at)
        .where(User.is_approved.is_(False), User.role == UserRole.RESIDENT)
        .order_by(User.created_at.asc(), User.id.asc())
    ).all()
    return [dict(row._mapping) for row in rows]


def approve_resident(
    db: Session,
    *,
    user_id: int,
    dispatcher: NotificationDispatcher,
    presence: PresenceRegistry,
) -> User:
    user = db.execute(
        select(User).where(User.id == user_id, User.is_approved.is_(False), User.role == UserRole.RESIDENT)
    ).scalar_one_or_none()
    if not user:
        raise LookupError('User not found or already approved')

    flat = block = apartment = None
    if user.flat_id:
        flat = db.execute(select(Flat).where(Flat.id == user.flat_id)).scalar_one_or_none()
        if not flat:
            raise ValueError('Flat not found for this user.')
        _ensure_flat_has_room(db, flat.id, 'Flat is now full. Cannot approve user.')
        if flat.block_id:
            block = db.execute(select(Block).where(Block.id == flat.block_id)).scalar_one_or_none()
    if user.apartment_id:
        apartment = db.execute(select(Apartment).where(Apartment.id == user.apartment_id)).scalar_one_or_none()

    user.is_approved = True
    user.updated_at = func.now()
    db.commit()
    logger.info('Approved resident %s', user.id)

    flat_label = (flat.unique_id or flat.number) if flat else None
    try:
        dispatcher.notify_resident_approved(user.id, user_name=user.name, flat_label=flat_label)
    except SQLAlchemyError:
        logger.exception('Failed to notify approved resident %s', user.id)

    presence.send_to_user(
        user.id,
        'user_approved',
        {
            'message': 'Your account has been approved',
            'apartment': {'id': apartment.id, 'name': apartment.name} if apartment else None,
            'flat': {'id': flat.id, 'number': flat.number} if flat else None,
            'block': {'id': block.id, 'name': block.name} if block else None,
        },
    )
    presence.broadcast_to_role(Role.ADMIN.value, 'refresh_pending_users')
    return user


def reject_resident(db: Session, *, user_id: int, presence: PresenceRegistry) -> None:
    user = db.execute(select(User).where(User.id == user_id, User.is_approved.is_(False))).scalar_one_or_none()
    if not user:
        raise LookupError('User not found or already approved')
    db.delete(user)
    db.commit()
    logger.info('Rejected and deleted pending user %s', user_id)
    presence.broadcast_to_role(Role.ADMIN.value, 'refresh_pending_users')
