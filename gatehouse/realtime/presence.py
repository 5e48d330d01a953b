"""In-memory addressing table for live realtime connections.

The registry is owned by the application object and rebuilt from client
re-registration after a restart. It never holds a source of truth: every
event pushed through it describes something already persisted.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    def send(self, event: str, payload: Any) -> None: ...

    def close(self) -> None: ...


@dataclass
class PresenceEntry:
    user_id: int
    role: str
    connection: Connection


class PresenceRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[int, PresenceEntry] = {}
        self._groups: dict[str, set[int]] = {}

    def register(self, user_id: int, role: str, connection: Connection) -> None:
        with self._lock:
            prior = self._entries.get(user_id)
            if prior:
                self._groups.get(prior.role, set()).discard(user_id)
            self._entries[user_id] = PresenceEntry(user_id=user_id, role=role, connection=connection)
            self._groups.setdefault(role, set()).add(user_id)

        if prior and prior.connection is not connection:
            logger.info('Replacing realtime connection for user %s', user_id)
            self._close_quietly(prior.connection)
        logger.info('User %s registered for realtime as %s', user_id, role)

    def unregister(self, connection: Connection) -> list[int]:
        """Drop every user registered on ``connection``; returns their ids."""
        with self._lock:
            removed = [entry for entry in self._entries.values() if entry.connection is connection]
            for entry in removed:
                del self._entries[entry.user_id]
                self._groups.get(entry.role, set()).discard(entry.user_id)
        for entry in removed:
            logger.info('User %s left realtime', entry.user_id)
        return sorted(entry.user_id for entry in removed)

    def is_connected(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._entries

    def connected_user_ids(self, role: str | None = None) -> list[int]:
        with self._lock:
            if role is None:
                return sorted(self._entries)
            return sorted(self._groups.get(role, set()))

    def send_to_user(self, user_id: int, event: str, payload: Any = None) -> bool:
        with self._lock:
            entry = self._entries.get(user_id)
        if not entry:
            return False
        self._send_quietly(entry, event, payload)
        return True

    def broadcast_to_role(self, role: str, event: str, payload: Any = None) -> int:
        with self._lock:
            targets = [self._entries[user_id] for user_id in self._groups.get(role, set()) if user_id in self._entries]
        for entry in targets:
            self._send_quietly(entry, event, payload)
        return len(targets)

    def _send_quietly(self, entry: PresenceEntry, event: str, payload: Any) -> None:
        try:
            entry.connection.send(event, payload)
        except Exception:
            logger.exception('Dropped realtime %s event for user %s', event, entry.user_id)

    def _close_quietly(self, connection: Connection) -> None:
        try:
            connection.close()
        except Exception:
            logger.exception('Failed to close replaced realtime connection')
