from __future__ import annotations

from functools import lru_cache

from gatehouse.config import settings
from gatehouse.services.fcm_push_gateway import FcmPushGateway
from gatehouse.services.mock_push_gateway import MockPushGateway


@lru_cache(maxsize=1)
def get_push_gateway():
    provider = settings.push_provider.strip().lower()
    if provider == 'fcm':
        return FcmPushGateway()
    return MockPushGateway()
