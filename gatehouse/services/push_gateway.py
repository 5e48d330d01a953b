from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    permanent_failure: bool = False
    error: str | None = None


class PushGateway(Protocol):
    def send(self, token: str, *, title: str, body: str, data: dict[str, str]) -> DeliveryResult: ...

    def send_many(
        self, tokens: list[str], *, title: str, body: str, data: dict[str, str]
    ) -> dict[str, DeliveryResult]: ...
