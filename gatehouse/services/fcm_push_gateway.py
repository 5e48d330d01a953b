from __future__ import annotations

import json
import logging
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from gatehouse.config import settings
from gatehouse.services.push_gateway import DeliveryResult

logger = logging.getLogger(__name__)

PERMANENT_ERROR_CODES = {'UNREGISTERED', 'SENDER_ID_MISMATCH'}


def _error_code(body: str) -> str | None:
    try:
        parsed = json.loads(body)
    except ValueError:
        return None
    error = parsed.get('error') or {}
    for detail in error.get('details') or []:
        code = detail.get('errorCode')
        if code:
            return code
    return error.get('status')


class FcmPushGateway:
    def __init__(self) -> None:
        if not settings.fcm_project_id:
            raise ValueError('FCM_PROJECT_ID is required when PUSH_PROVIDER=fcm')
        if not settings.fcm_access_token:
            raise ValueError('FCM_ACCESS_TOKEN is required when PUSH_PROVIDER=fcm')

        base_url = settings.fcm_api_base_url.rstrip('/')
        self.url = f'{base_url}/v1/projects/{settings.fcm_project_id}/messages:send'
        self.headers = {
            'Authorization': f'Bearer {settings.fcm_access_token}',
            'Content-Type': 'application/json',
        }

    def send(self, token: str, *, title: str, body: str, data: dict[str, str]) -> DeliveryResult:
        payload = {
            'message': {
                'token': token,
                'notification': {'title': title, 'body': body},
                'data': {key: str(value) for key, value in data.items()},
            }
        }
        req = Request(
            url=self.url,
            data=json.dumps(payload).encode('utf-8'),
            headers=self.headers,
            method='POST',
        )
        try:
            with urlopen(req, timeout=settings.push_timeout_seconds) as response:
                response.read()
        except HTTPError as exc:
            raw = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            code = _error_code(raw)
            permanent = exc.code == 404 or code in PERMANENT_ERROR_CODES
            logger.warning('FCM error %s (%s) for token %s', exc.code, code, token[:12])
            return DeliveryResult(success=False, permanent_failure=permanent, error=code or str(exc.code))
        except (URLError, TimeoutError, OSError) as exc:
            # Timeouts and unreachable hosts are transient.
            logger.warning('FCM network error for token %s: %s', token[:12], exc)
            return DeliveryResult(success=False, permanent_failure=False, error='network')

        return DeliveryResult(success=True)

    def send_many(
        self, tokens: list[str], *, title: str, body: str, data: dict[str, str]
    ) -> dict[str, DeliveryResult]:
        return {token: self.send(token, title=title, body=body, data=data) for token in tokens}
