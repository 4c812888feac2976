from typing import Any, Protocol
from dataclasses import dataclass
from collections.abc import Mapping

from tables.payment import Status


@dataclass(frozen=True)
class PaymentEvent:
    """Событие шлюза, приведенное к нашему набору статусов"""
    gateway: str
    external_id: str
    raw_status: str
    # None, если статус шлюза нам неизвестен
    status: Status | None
    status_message: str | None
    payload: dict[str, Any]


class PaymentGateway(Protocol):
    name: str

    def matches(self, payload: Mapping[str, Any], headers: Mapping[str, str]) -> bool:
        ...

    def verify(self, payload: Mapping[str, Any], headers: Mapping[str, str], query: Mapping[str, str]) -> bool:
        ...

    async def parse_event(self, payload: dict[str, Any]) -> PaymentEvent | None:
        ...

    async def fetch_event(self, external_id: str) -> PaymentEvent:
        ...


class GatewayError(Exception):
    ...
