import json
import asyncio
import httpx
import pytest
from typing import Any
from pytest_httpx import HTTPXMock
from sqlalchemy.exc import SQLAlchemyError

from errors import ReconciliationError, UnauthorizedError, ValidationError
from gateways import PaymentEvent, WompiGateway
from services.coupon import CouponValidator
from services.payment import PaymentService
from services.pricing import PricingService
from services.reconciler import OrderReconciler
from services.webhook import WebhookIngest
from gateway_payloads import wompi_event


class SlowGateway(WompiGateway):
    async def parse_event(self, payload: dict[str, Any]) -> PaymentEvent | None:
        await asyncio.sleep(5)
        return await super().parse_event(payload)


@pytest.fixture
def ingest(session_maker, gateways, reconciler) -> WebhookIngest:
    return WebhookIngest(
        gateways=gateways,
        payments=PaymentService(session_maker=session_maker),
        reconciler=reconciler
    )


async def test_approved_event_creates_order(ingest: WebhookIngest, make_payment, notifier):
    payment = await make_payment(external_id='tx-1', status='pending')
    body = json.dumps(wompi_event('tx-1', 'APPROVED')).encode()

    result = await ingest.handle(body, {}, {})

    assert result.action == 'order_reconciled'
    assert result.payment.status == 'approved'
    assert result.order.payment_id == payment.id

    again = await ingest.handle(body, {}, {})

    assert again.action == 'order_reconciled'
    assert again.order.id == result.order.id
    assert len(notifier.orders) == 1


async def test_declined_event_only_updates_payment(ingest: WebhookIngest, make_payment, session_maker):
    await make_payment(external_id='tx-2', status='pending')

    result = await ingest.handle(json.dumps(wompi_event('tx-2', 'DECLINED')).encode(), {}, {})

    assert result.action == 'status_updated'
    assert result.order is None
    assert (await PaymentService(session_maker=session_maker).get('tx-2')).status == 'declined'


async def test_acknowledged_events(ingest: WebhookIngest, make_payment):
    await make_payment(external_id='tx-3', status='pending')

    result = await ingest.handle(json.dumps(wompi_event('tx-3', 'SOMETHING_NEW')).encode(), {}, {})
    assert result.action == 'unknown_status'

    result = await ingest.handle(json.dumps(wompi_event('tx-unknown', 'APPROVED')).encode(), {}, {})
    assert result.action == 'unknown_payment'

    result = await ingest.handle(json.dumps(wompi_event('tx-3', 'APPROVED', event='nequi_token.updated')).encode(), {}, {})
    assert result.action == 'ignored'


async def test_approved_payment_without_items(ingest: WebhookIngest, make_payment):
    await make_payment(external_id='tx-4', status='pending', items=[])

    result = await ingest.handle(json.dumps(wompi_event('tx-4', 'APPROVED')).encode(), {}, {})

    assert result.action == 'order_rejected'
    assert result.order is None


@pytest.mark.parametrize('body', [b'not json', b'[]', json.dumps({'hello': 'world'}).encode()])
async def test_unverifiable_body(ingest: WebhookIngest, body: bytes):
    with pytest.raises(UnauthorizedError):
        await ingest.handle(body, {'x-webhook-source': 'wompi'}, {})


async def test_timeout(session_maker, gateways, reconciler, make_payment):
    await make_payment(external_id='tx-5', status='pending')
    slow = SlowGateway(client=gateways['wompi'].client, events_secret=gateways['wompi'].events_secret)
    ingest = WebhookIngest(
        gateways={'wompi': slow},
        payments=PaymentService(session_maker=session_maker),
        reconciler=reconciler,
        timeout=0.05
    )

    with pytest.raises(ReconciliationError):
        await ingest.handle(json.dumps(wompi_event('tx-5', 'APPROVED')).encode(), {}, {})

    assert (await PaymentService(session_maker=session_maker).get('tx-5')).status == 'pending'


async def test_refresh(ingest: WebhookIngest, make_payment, httpx_mock: HTTPXMock):
    await make_payment(external_id='tx-6', status='pending')
    httpx_mock.add_response(
        url='https://sandbox.wompi.co/v1/transactions/tx-6',
        json={'data': {'id': 'tx-6', 'status': 'APPROVED', 'status_message': None}}
    )

    result = await ingest.refresh('tx-6', 'wompi')

    assert result.action == 'order_reconciled'
    assert result.order is not None


async def test_refresh_errors(ingest: WebhookIngest, httpx_mock: HTTPXMock):
    with pytest.raises(ValidationError):
        await ingest.refresh('tx-7', 'paypal')

    httpx_mock.add_response(url='https://sandbox.wompi.co/v1/transactions/tx-7', status_code=503)
    with pytest.raises(ReconciliationError):
        await ingest.refresh('tx-7', 'wompi')


class SlowNotifier:
    def __init__(self, delay: float):
        self.delay = delay
        self.orders = []

    async def order_created(self, order, payer_email):
        await asyncio.sleep(self.delay)
        self.orders.append(order.id)


class BrokenPayments(PaymentService):
    async def set_status(self, *args, **kwargs):
        raise SQLAlchemyError('database is down')


def slow_ingest(session_maker, gateways, notifier, timeout: float, notification_timeout: float) -> WebhookIngest:
    return WebhookIngest(
        gateways=gateways,
        payments=PaymentService(session_maker=session_maker),
        reconciler=OrderReconciler(
            session_maker=session_maker,
            coupon_validator=CouponValidator(session_maker=session_maker),
            pricing=PricingService(),
            notifier=notifier,
            notification_timeout=notification_timeout
        ),
        timeout=timeout
    )


async def test_slow_notification_is_outside_webhook_timeout(session_maker, gateways, make_payment):
    await make_payment(external_id='tx-8', status='pending')
    notifier = SlowNotifier(delay=0.3)
    ingest = slow_ingest(session_maker, gateways, notifier, timeout=0.1, notification_timeout=5)

    result = await ingest.handle(json.dumps(wompi_event('tx-8', 'APPROVED')).encode(), {}, {})

    assert result.action == 'order_reconciled'
    assert result.created
    assert notifier.orders == [result.order.id]


async def test_notification_timeout_keeps_order(session_maker, gateways, make_payment):
    await make_payment(external_id='tx-9', status='pending')
    notifier = SlowNotifier(delay=5)
    ingest = slow_ingest(session_maker, gateways, notifier, timeout=5, notification_timeout=0.05)

    result = await ingest.handle(json.dumps(wompi_event('tx-9', 'APPROVED')).encode(), {}, {})

    assert result.action == 'order_reconciled'
    assert notifier.orders == []

    # Повторная доставка находит тот же заказ и не шлет оповещение второй раз
    again = await ingest.handle(json.dumps(wompi_event('tx-9', 'APPROVED')).encode(), {}, {})
    assert again.order.id == result.order.id
    assert not again.created


async def test_refresh_with_unreachable_gateway(ingest: WebhookIngest, make_payment, httpx_mock: HTTPXMock):
    await make_payment(external_id='tx-10', status='pending')
    httpx_mock.add_exception(httpx.ConnectError('gateway down'), url='https://sandbox.wompi.co/v1/transactions/tx-10')

    with pytest.raises(ReconciliationError):
        await ingest.refresh('tx-10', 'wompi')


async def test_refresh_with_database_failure(session_maker, gateways, reconciler, httpx_mock: HTTPXMock):
    httpx_mock.add_response(
        url='https://sandbox.wompi.co/v1/transactions/tx-11',
        json={'data': {'id': 'tx-11', 'status': 'APPROVED', 'status_message': None}}
    )
    ingest = WebhookIngest(gateways=gateways, payments=BrokenPayments(session_maker=session_maker), reconciler=reconciler)

    with pytest.raises(ReconciliationError):
        await ingest.refresh('tx-11', 'wompi')
