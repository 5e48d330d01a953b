from __future__ import annotations

import logging
from dataclasses import dataclass, field

from gatehouse.services.push_gateway import DeliveryResult

logger = logging.getLogger(__name__)


@dataclass
class SentPush:
    token: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


class MockPushGateway:
    """Records pushes in memory instead of calling a provider.

    Tokens in ``dead_tokens`` answer like an unregistered device and tokens in
    ``unreachable_tokens`` like a network failure.
    """

    def __init__(self) -> None:
        self.sent: list[SentPush] = []
        self.dead_tokens: set[str] = set()
        self.unreachable_tokens: set[str] = set()

    def send(self, token: str, *, title: str, body: str, data: dict[str, str]) -> DeliveryResult:
        if token in self.dead_tokens:
            return DeliveryResult(success=False, permanent_failure=True, error='registration-token-not-registered')
        if token in self.unreachable_tokens:
            return DeliveryResult(success=False, permanent_failure=False, error='unavailable')

        self.sent.append(SentPush(token=token, title=title, body=body, data=dict(data)))
        logger.info('Mock push to %s: %s', token[:12], title)
        return DeliveryResult(success=True)

    def send_many(
        self, tokens: list[str], *, title: str, body: str, data: dict[str, str]
    ) -> dict[str, DeliveryResult]:
        return {token: self.send(token, title=title, body=body, data=data) for token in tokens}
