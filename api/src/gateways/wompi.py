import hmac
import hashlib
import httpx
import logging
from typing import Any
from dataclasses import dataclass
from collections.abc import Mapping

from .base import PaymentEvent, GatewayError


logger = logging.getLogger('neosale-gateway-wompi')


# https://docs.wompi.co/docs/colombia/estados-de-transacciones/
STATUS_MAP = {
    'APPROVED': 'approved',
    'DECLINED': 'declined',
    'VOIDED': 'voided',
    'ERROR': 'error',
    'PENDING': 'pending',
}


def _resolve(data: Mapping[str, Any], path: str) -> Any:
    value: Any = data
    for key in path.split('.'):
        if not isinstance(value, Mapping) or key not in value:
            return None
        value = value[key]
    return value


def event_checksum(payload: Mapping[str, Any], events_secret: str) -> str:
    # https://docs.wompi.co/docs/colombia/eventos/#seguridad
    # sha256(значения signature.properties из data + timestamp + секрет событий)
    properties = payload['signature']['properties']
    values = ''.join(str(_resolve(payload['data'], prop)) for prop in properties)
    return hashlib.sha256(f'{values}{payload["timestamp"]}{events_secret}'.encode()).hexdigest()


def to_event(transaction: Mapping[str, Any], payload: dict[str, Any]) -> PaymentEvent:
    raw_status = str(transaction.get('status', ''))
    return PaymentEvent(
        gateway='wompi',
        external_id=str(transaction['id']),
        raw_status=raw_status,
        status=STATUS_MAP.get(raw_status.upper()),
        status_message=transaction.get('status_message'),
        payload=payload
    )


@dataclass(frozen=True)
class WompiGateway:
    client: httpx.AsyncClient
    events_secret: str
    name: str = 'wompi'

    def matches(self, payload: Mapping[str, Any], headers: Mapping[str, str]) -> bool:
        return 'event' in payload and 'signature' in payload and 'data' in payload

    def verify(self, payload: Mapping[str, Any], headers: Mapping[str, str], query: Mapping[str, str]) -> bool:
        if not self.events_secret:
            logger.warning('wompi events secret is not configured, rejecting event')
            return False

        try:
            checksum = payload['signature']['checksum']
            expected = event_checksum(payload, self.events_secret)
        except (KeyError, TypeError):
            return False

        return isinstance(checksum, str) and hmac.compare_digest(checksum.lower(), expected)

    async def parse_event(self, payload: dict[str, Any]) -> PaymentEvent | None:
        if payload.get('event') != 'transaction.updated':
            logger.info(f'wompi event "{payload.get("event")}" is not handled, ignoring')
            return None

        transaction = _resolve(payload, 'data.transaction')
        if not isinstance(transaction, Mapping) or 'id' not in transaction:
            logger.warning('wompi event has no transaction, ignoring')
            return None

        return to_event(transaction, payload)

    async def fetch_event(self, external_id: str) -> PaymentEvent:
        # https://docs.wompi.co/docs/colombia/seguimiento-de-transacciones/
        try:
            response = await self.client.get(url=f'/v1/transactions/{external_id}')
        except httpx.HTTPError as e:
            raise GatewayError(f'couldn\'t reach wompi for transaction {external_id}: {e!r}') from e

        if response.status_code != 200:
            raise GatewayError(f'got status {response.status_code} from wompi for transaction {external_id}')

        try:
            payload = response.json()
            return to_event(payload['data'], payload)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise GatewayError(f'unexpected wompi response for transaction {external_id}') from e
