"""Guest visit lifecycle.

A visit starts ``pending`` and ends ``checked_in`` or ``rejected``; nothing
leaves a terminal state. Resident invitations are checked in by security
scanning the visit's ticket. Manual sign-ins at the gate are checked in or
rejected by the resident of the destination flat.

Every transition commits its state change with a conditional UPDATE that
re-states the expected prior state, so two concurrent attempts on the same
visit cannot both win. Notifications are sent only after that commit and
never affect the transition's outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gatehouse.auth import Principal, Role
from gatehouse.models import Block, Flat, Guest, User, UserRole, Visit, VisitOrigin, VisitStatus
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.services.notification_service import NotificationDispatcher
from gatehouse.services.ticket_service import InvalidTicket, issue_ticket, verify_ticket

logger = logging.getLogger(__name__)

LOG_FILTER_WINDOWS = {
    'today': None,
    'week': timedelta(days=7),
    'month': timedelta(days=30),
}


@dataclass(frozen=True)
class GuestInfo:
    name: str
    phone: str | None


@dataclass(frozen=True)
class InviteResult:
    guest: Guest
    visit: Visit
    qr_token: str


@dataclass(frozen=True)
class CheckInResult:
    visit_id: int
    guest_name: str
    flat_number: str


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clean_guest_info(info: GuestInfo) -> GuestInfo:
    name = (info.name or '').strip()
    if not name:
        raise ValueError('Guest name is required')
    phone = (info.phone or '').strip() or None
    return GuestInfo(name=name, phone=phone)


def _require_role(actor: Principal, role: Role) -> None:
    if actor.role != role:
        raise PermissionError(f'{role.value.capitalize()} access required')


def _best_effort(label: str, callback: Callable[[], None]) -> None:
    try:
        callback()
    except SQLAlchemyError:
        logger.exception('Notification step failed after %s', label)


def _flat_with_block(db: Session, flat_id: int | None) -> tuple[Flat | None, Block | None]:
    if not flat_id:
        return None, None
    flat = db.execute(select(Flat).where(Flat.id == flat_id)).scalar_one_or_none()
    if not flat or not flat.block_id:
        return flat, None
    block = db.execute(select(Block).where(Block.id == flat.block_id)).scalar_one_or_none()
    return flat, block


def find_flat_resident(db: Session, flat_id: int) -> User | None:
    """The approved resident that speaks for a flat: lowest user id wins."""
    return db.execute(
        select(User)
        .where(User.flat_id == flat_id, User.role == UserRole.RESIDENT, User.is_approved.is_(True))
        .order_by(User.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def approved_user_ids(db: Session, role: UserRole) -> list[int]:
    rows = db.execute(
        select(User.id).where(User.role == role, User.is_approved.is_(True)).order_by(User.id.asc())
    ).all()
    return [row[0] for row in rows]


def latest_visit_for_guest(db: Session, guest_id: int) -> Visit | None:
    return db.execute(
        select(Visit)
        .where(Visit.guest_id == guest_id)
        .order_by(Visit.created_at.desc(), Visit.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _owned_guest(db: Session, *, resident: Principal, guest_id: int) -> Guest:
    _require_role(resident, Role.RESIDENT)
    guest = db.execute(select(Guest).where(Guest.id == guest_id)).scalar_one_or_none()
    if not guest or guest.invited_by != resident.id:
        raise LookupError('Guest not found or not authorized')
    return guest


def invite_guest(
    db: Session,
    *,
    resident: Principal,
    guest_info: GuestInfo,
    purpose: str | None,
    expected_arrival: datetime | None,
    dispatcher: NotificationDispatcher,
) -> InviteResult:
    _require_role(resident, Role.RESIDENT)
    info = _clean_guest_info(guest_info)
    clean_purpose = (purpose or '').strip()
    if not clean_purpose:
        raise ValueError('Purpose is required')

    flat, _block = _flat_with_block(db, resident.flat_id)
    if not flat:
        raise LookupError('Flat not found')

    guest = Guest(name=info.name, phone=info.phone, invited_by=resident.id, is_daily_pass=False)
    db.add(guest)
    db.flush()

    visit = Visit(
        guest_id=guest.id,
        flat_id=flat.id,
        status=VisitStatus.PENDING,
        origin=VisitOrigin.INVITED,
        purpose=clean_purpose,
        expected_arrival=expected_arrival,
        is_qr_used=False,
    )
    db.add(visit)
    db.flush()

    visit.qr_token = issue_ticket(visit.id, guest.name, flat.unique_id)
    db.commit()
    logger.info('Resident %s invited guest %s (visit %s)', resident.id, guest.id, visit.id)

    _best_effort(
        'invite',
        lambda: dispatcher.notify_new_visitor(
            resident.id, guest_name=guest.name, flat_number=flat.number, visit_id=visit.id
        ),
    )
    return InviteResult(guest=guest, visit=visit, qr_token=visit.qr_token)


def list_invites(
    db: Session,
    *,
    resident: Principal,
    limit: int = 10,
    offset: int = 0,
    status: str | None = None,
    search: str | None = None,
) -> list[dict]:
    _require_role(resident, Role.RESIDENT)
    query = (
        select(
            Guest.id,
            Guest.name,
            Guest.phone,
            Visit.id.label('visit_id'),
            Visit.status,
            Visit.purpose,
            Visit.expected_arrival,
            Visit.checked_in_at,
            Visit.qr_token,
            Visit.created_at,
            Flat.number.label('flat_number'),
            Flat.unique_id.label('flat_unique_id'),
            Block.name.label('block_name'),
        )
        .join(Visit, Visit.guest_id == Guest.id)
        .join(Flat, Flat.id == Visit.flat_id)
        .outerjoin(Block, Block.id == Flat.block_id)
        .where(Guest.invited_by == resident.id)
    )
    if status:
        query = query.where(Visit.status == _parse_status(status))
    if search:
        query = query.where(_search_clause(search))

    rows = db.execute(
        query.order_by(Visit.created_at.desc(), Visit.id.desc()).limit(max(1, min(limit, 100))).offset(max(0, offset))
    ).all()
    return [_row_dict(row) for row in rows]


def edit_invite(
    db: Session,
    *,
    resident: Principal,
    guest_id: int,
    guest_info: GuestInfo,
    purpose: str | None,
    expected_arrival: datetime | None,
) -> Visit:
    guest = _owned_guest(db, resident=resident, guest_id=guest_id)
    info = _clean_guest_info(guest_info)
    visit = latest_visit_for_guest(db, guest.id)
    if not visit:
        raise LookupError('Visit not found')
    if visit.status != VisitStatus.PENDING:
        raise ValueError('Only pending invites can be edited')

    values: dict = {'expected_arrival': expected_arrival, 'updated_at': func.now()}
    if purpose is not None and purpose.strip():
        values['purpose'] = purpose.strip()
    result = db.execute(
        update(Visit)
        .where(Visit.id == visit.id, Visit.status == VisitStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ValueError('Only pending invites can be edited')
    db.execute(
        update(Guest)
        .where(Guest.id == guest.id)
        .values(name=info.name, phone=info.phone)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(guest)
    db.refresh(visit)
    return visit


def cancel_invite(db: Session, *, resident: Principal, guest_id: int) -> None:
    guest = _owned_guest(db, resident=resident, guest_id=guest_id)
    visit = latest_visit_for_guest(db, guest.id)
    if not visit:
        raise LookupError('Visit not found')
    if visit.status != VisitStatus.PENDING:
        raise ValueError('Only pending invites can be cancelled')

    result = db.execute(
        delete(Visit)
        .where(Visit.id == visit.id, Visit.status == VisitStatus.PENDING)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ValueError('Only pending invites can be cancelled')
    db.execute(delete(Guest).where(Guest.id == guest.id).execution_options(synchronize_session=False))
    db.commit()
    db.expunge(visit)
    db.expunge(guest)
    logger.info('Resident %s cancelled invite for guest %s', resident.id, guest_id)


def check_in(
    db: Session,
    *,
    security: Principal,
    qr_token: str | None,
    dispatcher: NotificationDispatcher,
    presence: PresenceRegistry,
) -> CheckInResult:
    _require_role(security, Role.SECURITY)
    claims = verify_ticket(qr_token)

    visit = db.execute(select(Visit).where(Visit.qr_token == qr_token)).scalar_one_or_none()
    if not visit or visit.id != claims.visit_id:
        raise InvalidTicket()

    result = db.execute(
        update(Visit)
        .where(
            Visit.id == visit.id,
            Visit.is_qr_used.is_(False),
            Visit.status == VisitStatus.PENDING,
        )
        .values(
            status=VisitStatus.CHECKED_IN,
            is_qr_used=True,
            checked_by=security.id,
            checked_in_at=_now(),
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidTicket()
    db.commit()
    db.refresh(visit)

    guest = db.execute(select(Guest).where(Guest.id == visit.guest_id)).scalar_one()
    flat = db.execute(select(Flat).where(Flat.id == visit.flat_id)).scalar_one()
    logger.info('Security %s checked in visit %s', security.id, visit.id)

    def _notify() -> None:
        for security_id in approved_user_ids(db, UserRole.SECURITY):
            dispatcher.notify_visit_approved(
                security_id, guest_name=guest.name, flat_number=flat.number, visit_id=visit.id
            )

        resident = find_flat_resident(db, flat.id)
        if resident:
            dispatcher.push_to_user(
                resident.id,
                title='Guest Checked In',
                body=f'Your guest {guest.name} has checked in at Flat {flat.number}',
                data={'type': 'guest_checked_in', 'visitId': visit.id, 'guestName': guest.name, 'flatNumber': flat.number},
            )

        update_payload = {
            'visitId': visit.id,
            'status': VisitStatus.CHECKED_IN.value,
            'guestName': guest.name,
            'flatNumber': flat.number,
        }
        presence.broadcast_to_role(Role.SECURITY.value, 'visitor_log_update', update_payload)
        presence.broadcast_to_role(Role.ADMIN.value, 'visitor_log_update', update_payload)

    _best_effort('check-in', _notify)
    return CheckInResult(visit_id=visit.id, guest_name=guest.name, flat_number=flat.number)


def manual_signin(
    db: Session,
    *,
    guest_info: GuestInfo,
    flat_id: int | None,
    dispatcher: NotificationDispatcher,
    presence: PresenceRegistry,
) -> Visit:
    if not flat_id:
        raise ValueError('flat_id is required and must be valid.')
    info = _clean_guest_info(guest_info)

    flat, block = _flat_with_block(db, flat_id)
    if not flat:
        raise LookupError('Flat not found')
    resident = find_flat_resident(db, flat.id)
    if not resident:
        raise LookupError('Resident not found')

    guest = Guest(name=info.name, phone=info.phone, invited_by=None, is_daily_pass=False)
    db.add(guest)
    db.flush()
    visit = Visit(
        guest_id=guest.id,
        flat_id=flat.id,
        status=VisitStatus.PENDING,
        origin=VisitOrigin.MANUAL_SIGN_IN,
        purpose=None,
        expected_arrival=None,
        qr_token=None,
        is_qr_used=False,
    )
    db.add(visit)
    db.commit()
    logger.info('Manual sign-in of guest %s for flat %s (visit %s)', guest.id, flat.id, visit.id)

    block_name = block.name if block else None

    def _notify() -> None:
        dispatcher.notify_new_visitor(resident.id, guest_name=guest.name, flat_number=flat.number, visit_id=visit.id)
        presence.send_to_user(
            resident.id,
            'new_manual_visitor',
            {
                'guest': {'id': guest.id, 'name': guest.name, 'phone': guest.phone},
                'visit': {
                    'id': visit.id,
                    'status': visit.status.value,
                    'flat_id': flat.id,
                    'flat_number': flat.number,
                    'block_name': block_name,
                    'created_at': visit.created_at,
                },
            },
        )

    _best_effort('manual sign-in', _notify)
    return visit


def _resident_manual_visit(db: Session, *, resident: Principal, visit_id: int, action: str) -> Visit:
    _require_role(resident, Role.RESIDENT)
    visit = db.execute(select(Visit).where(Visit.id == visit_id)).scalar_one_or_none()
    if not visit:
        raise LookupError('Visit not found')
    if resident.flat_id is None or visit.flat_id != resident.flat_id:
        raise PermissionError('Not authorized for this flat')
    if visit.origin != VisitOrigin.MANUAL_SIGN_IN:
        raise ValueError(f'Only manual sign-in visits can be {action}')
    if visit.status != VisitStatus.PENDING:
        raise ValueError(f'Only pending invites/visits can be {action}')
    return visit


def _transition_manual(db: Session, *, visit: Visit, action: str, values: dict) -> None:
    result = db.execute(
        update(Visit)
        .where(
            Visit.id == visit.id,
            Visit.status == VisitStatus.PENDING,
            Visit.origin == VisitOrigin.MANUAL_SIGN_IN,
        )
        .values(updated_at=func.now(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ValueError(f'Only pending invites/visits can be {action}')
    db.commit()
    db.refresh(visit)


def approve_manual(
    db: Session,
    *,
    resident: Principal,
    visit_id: int,
    dispatcher: NotificationDispatcher,
    presence: PresenceRegistry,
) -> Visit:
    visit = _resident_manual_visit(db, resident=resident, visit_id=visit_id, action='approved')
    _transition_manual(
        db,
        visit=visit,
        action='approved',
        values={'status': VisitStatus.CHECKED_IN, 'checked_in_at': _now(), 'checked_by': resident.id},
    )
    logger.info('Resident %s approved manual visit %s', resident.id, visit.id)

    def _notify() -> None:
        guest = db.execute(select(Guest).where(Guest.id == visit.guest_id)).scalar_one()
        flat = db.execute(select(Flat).where(Flat.id == visit.flat_id)).scalar_one()
        for security_id in approved_user_ids(db, UserRole.SECURITY):
            dispatcher.notify_visit_approved(
                security_id, guest_name=guest.name, flat_number=flat.number, visit_id=visit.id
            )

    _best_effort('manual approval', _notify)

    status_payload = {'visitId': visit.id, 'status': VisitStatus.CHECKED_IN.value}
    presence.broadcast_to_role(Role.SECURITY.value, 'manual_visitor_status', status_payload)
    presence.broadcast_to_role(Role.SECURITY.value, 'refresh_visitor_log')
    presence.send_to_user(resident.id, 'manual_visitor_status_update', status_payload)
    return visit


def reject_manual(
    db: Session,
    *,
    resident: Principal,
    visit_id: int,
    presence: PresenceRegistry,
) -> Visit:
    visit = _resident_manual_visit(db, resident=resident, visit_id=visit_id, action='rejected')
    _transition_manual(db, visit=visit, action='rejected', values={'status': VisitStatus.REJECTED})
    logger.info('Resident %s rejected manual visit %s', resident.id, visit.id)

    status_payload = {'visitId': visit.id, 'status': VisitStatus.REJECTED.value}
    presence.broadcast_to_role(Role.SECURITY.value, 'manual_visitor_status', status_payload)
    presence.send_to_user(resident.id, 'manual_visitor_status_update', status_payload)
    return visit


def list_manual_pending(db: Session, *, resident: Principal) -> list[dict]:
    _require_role(resident, Role.RESIDENT)
    flat, _block = _flat_with_block(db, resident.flat_id)
    if not flat:
        raise LookupError('Flat not found')

    rows = db.execute(
        select(
            Visit.id.label('visit_id'),
            Guest.id.label('guest_id'),
            Guest.name,
            Guest.phone,
            Visit.status,
            Visit.created_at,
            Flat.number.label('flat_number'),
            Flat.unique_id.label('flat_unique_id'),
        )
        .join(Guest, Guest.id == Visit.guest_id)
        .join(Flat, Flat.id == Visit.flat_id)
        .where(
            Visit.flat_id == flat.id,
            Visit.status == VisitStatus.PENDING,
            Visit.origin == VisitOrigin.MANUAL_SIGN_IN,
        )
        .order_by(Visit.created_at.desc(), Visit.id.desc())
    ).all()
    return [_row_dict(row) for row in rows]


def list_visit_log(
    db: Session,
    *,
    actor: Principal,
    filter_by: str | None = None,
    status: str | None = None,
    search: str | None = None,
    now: datetime | None = None,
) -> list[dict]:
    if actor.role not in {Role.SECURITY, Role.ADMIN}:
        raise PermissionError('Access denied')

    query = (
        select(
            Visit.id,
            Guest.name,
            Guest.phone,
            Flat.number.label('flat_number'),
            Visit.status,
            Visit.origin,
            Visit.purpose,
            Visit.expected_arrival,
            Visit.checked_in_at,
            Visit.created_at,
        )
        .join(Guest, Guest.id == Visit.guest_id)
        .join(Flat, Flat.id == Visit.flat_id)
    )
    if status:
        query = query.where(Visit.status == _parse_status(status))
    if filter_by:
        if filter_by not in LOG_FILTER_WINDOWS:
            raise ValueError('Invalid date filter')
        current = now or _now()
        window = LOG_FILTER_WINDOWS[filter_by]
        since = current.replace(hour=0, minute=0, second=0, microsecond=0) if window is None else current - window
        query = query.where(Visit.created_at >= since)
    if search:
        query = query.where(_search_clause(search))

    rows = db.execute(query.order_by(Visit.created_at.desc(), Visit.id.desc())).all()
    return [_row_dict(row) for row in rows]


def _parse_status(raw: str) -> VisitStatus:
    try:
        return VisitStatus(raw.strip().lower())
    except ValueError as exc:
        raise ValueError('Invalid status filter') from exc


def _search_clause(search: str):
    pattern = f'%{search.strip()}%'
    return or_(Guest.name.ilike(pattern), Guest.phone.ilike(pattern))


def _row_dict(row) -> dict:
    data = dict(row._mapping)
    for key, value in data.items():
        if hasattr(value, 'value'):
            data[key] = value.value
    return data
