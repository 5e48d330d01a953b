from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from gatehouse.auth import Role
from gatehouse.config import settings
from gatehouse.realtime.connection import WebSocketConnection
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.security.sessions import load_principal_from_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=['realtime'])


def _resolve_registration(data: dict) -> tuple[int, str]:
    try:
        user_id = int(data.get('userId'))
        role = Role(data.get('role')).value
    except (TypeError, ValueError) as exc:
        raise ValueError('userId and role are required') from exc

    token = data.get('token')
    if token:
        principal = load_principal_from_token(token)
        if not principal or principal.id != user_id or principal.role.value != role:
            raise ValueError('Invalid access token')
    elif settings.realtime_require_token:
        raise ValueError('Access token required')
    return user_id, role


@router.websocket('/ws')
async def realtime_socket(websocket: WebSocket) -> None:
    presence: PresenceRegistry = websocket.app.state.presence
    await websocket.accept()
    connection = WebSocketConnection(websocket, asyncio.get_running_loop())
    writer = asyncio.create_task(connection.pump())

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                connection.send('error', {'message': 'Malformed message'})
                continue
            if not isinstance(message, dict):
                connection.send('error', {'message': 'Malformed message'})
                continue

            if message.get('event') != 'register':
                continue
            try:
                user_id, role = _resolve_registration(message.get('data') or {})
            except ValueError as exc:
                logger.warning('Rejected realtime registration: %s', exc)
                connection.send('error', {'message': str(exc)})
                continue
            presence.register(user_id, role, connection)
            connection.send('registered', {'userId': user_id, 'role': role})
    except (WebSocketDisconnect, ConnectionError, RuntimeError) as exc:
        logger.debug('Realtime client disconnected: %s', exc)
    finally:
        presence.unregister(connection)
        connection.close()
        try:
            await asyncio.wait_for(writer, timeout=1)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            writer.cancel()
