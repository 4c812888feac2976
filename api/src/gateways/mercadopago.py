import hmac
import hashlib
import httpx
import logging
from typing import Any
from dataclasses import dataclass
from collections.abc import Mapping

from .base import PaymentEvent, GatewayError


logger = logging.getLogger('neosale-gateway-mercadopago')


# https://www.mercadopago.com.co/developers/es/docs/checkout-api/response-handling/collection-results
STATUS_MAP = {
    'approved': 'approved',
    'pending': 'pending',
    'in_process': 'pending',
    'authorized': 'pending',
    'in_mediation': 'pending',
    'rejected': 'declined',
    'cancelled': 'voided',
    'refunded': 'voided',
    'charged_back': 'voided',
}


def parse_signature_header(header: str) -> tuple[str | None, str | None]:
    ts = v1 = None
    for part in header.split(','):
        key, _, value = part.strip().partition('=')
        if key == 'ts':
            ts = value
        elif key == 'v1':
            v1 = value
    return ts, v1


def signature_manifest(data_id: str, request_id: str, ts: str) -> str:
    # https://www.mercadopago.com.co/developers/es/docs/your-integrations/notifications/webhooks
    if data_id.isalnum():
        data_id = data_id.lower()
    return f'id:{data_id};request-id:{request_id};ts:{ts};'


def sign(secret: str, manifest: str) -> str:
    return hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class MercadoPagoGateway:
    client: httpx.AsyncClient
    webhook_secret: str
    name: str = 'mercadopago'

    def matches(self, payload: Mapping[str, Any], headers: Mapping[str, str]) -> bool:
        return 'x-signature' in headers or ('type' in payload and isinstance(payload.get('data'), Mapping))

    def verify(self, payload: Mapping[str, Any], headers: Mapping[str, str], query: Mapping[str, str]) -> bool:
        if not self.webhook_secret:
            logger.warning('mercadopago webhook secret is not configured, rejecting notification')
            return False

        ts, v1 = parse_signature_header(headers.get('x-signature', ''))
        request_id = headers.get('x-request-id', '')
        data = payload.get('data')
        data_id = query.get('data.id') or (str(data.get('id', '')) if isinstance(data, Mapping) else '')

        if not ts or not v1 or not data_id:
            return False

        expected = sign(self.webhook_secret, signature_manifest(data_id, request_id, ts))
        return hmac.compare_digest(v1.lower(), expected)

    async def parse_event(self, payload: dict[str, Any]) -> PaymentEvent | None:
        if payload.get('type') != 'payment':
            logger.info(f'mercadopago notification of type "{payload.get("type")}" is not handled, ignoring')
            return None

        # Уведомление содержит только id, статус запрашиваем у шлюза
        return await self.fetch_event(str(payload['data']['id']))

    async def fetch_event(self, external_id: str) -> PaymentEvent:
        # https://www.mercadopago.com.co/developers/es/reference/payments/_payments_id/get
        try:
            response = await self.client.get(url=f'/v1/payments/{external_id}')
        except httpx.HTTPError as e:
            raise GatewayError(f'couldn\'t reach mercadopago for payment {external_id}: {e!r}') from e

        if response.status_code != 200:
            raise GatewayError(f'got status {response.status_code} from mercadopago for payment {external_id}')

        try:
            payment = response.json()
            raw_status = str(payment.get('status', ''))
            return PaymentEvent(
                gateway=self.name,
                external_id=str(payment['id']),
                raw_status=raw_status,
                status=STATUS_MAP.get(raw_status),
                status_message=payment.get('status_detail'),
                payload=payment
            )
        except (ValueError, KeyError, AttributeError) as e:
            raise GatewayError(f'unexpected mercadopago response for payment {external_id}') from e
