"""Signed, time-boxed check-in tickets (the QR payload handed to guests).

A ticket only proves that the holder was issued a pass for a visit. Whether
the pass has already been consumed is tracked on the visit row, so verifying
a ticket says nothing about single use.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from gatehouse.config import settings

TICKET_ALGORITHM = 'HS256'
INVALID_TICKET_MESSAGE = 'Invalid or already used QR code'


class InvalidTicket(ValueError):
    def __init__(self, message: str = INVALID_TICKET_MESSAGE) -> None:
        super().__init__(message)


@dataclass(frozen=True)
class TicketClaims:
    visit_id: int
    guest_name: str
    flat_identifier: str
    issued_at: datetime


def issue_ticket(
    visit_id: int,
    guest_name: str,
    flat_identifier: str,
    *,
    issued_at: datetime | None = None,
) -> str:
    issued_at = issued_at or datetime.now(tz=timezone.utc)
    expires_at = issued_at + timedelta(hours=settings.ticket_ttl_hours)
    claims = {
        'visit_id': visit_id,
        'guest_name': guest_name,
        'flat': flat_identifier,
        'iat': int(issued_at.timestamp()),
        'exp': int(expires_at.timestamp()),
    }
    return jwt.encode(claims, settings.ticket_signing_key, algorithm=TICKET_ALGORITHM)


def verify_ticket(ticket: str | None) -> TicketClaims:
    # Every failure collapses into the same error so callers cannot probe why.
    if not ticket:
        raise InvalidTicket()
    try:
        claims = jwt.decode(ticket, settings.ticket_signing_key, algorithms=[TICKET_ALGORITHM])
        return TicketClaims(
            visit_id=int(claims['visit_id']),
            guest_name=str(claims['guest_name']),
            flat_identifier=str(claims['flat']),
            issued_at=datetime.fromtimestamp(int(claims['iat']), tz=timezone.utc),
        )
    except (JWTError, KeyError, TypeError, ValueError) as exc:
        raise InvalidTicket() from exc
