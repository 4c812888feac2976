import json
import asyncio
import logging
from typing import Annotated, Any, Literal
from dataclasses import dataclass
from collections.abc import Mapping
from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError

import tables
from errors import NotFoundError, ReconciliationError, UnauthorizedError, ValidationError
from gateways import PaymentEvent, PaymentGateway, GatewayError, get_gateways
from services.payment import PaymentService, get_payment_service
from services.reconciler import OrderReconciler, get_order_reconciler
from settings import settings


logger = logging.getLogger('neosale-webhooks')


Action = Literal['ignored', 'unknown_payment', 'unknown_status', 'status_updated', 'order_reconciled', 'order_rejected']


@dataclass(frozen=True)
class IngestResult:
    action: Action
    payment: tables.Payment | None = None
    order: tables.Order | None = None
    # Заказ создан этим вызовом, а не найден существующий
    created: bool = False


@dataclass(frozen=True)
class WebhookIngest:
    """
    Принимает уведомления шлюзов.
    Отвечаем 200 на все, что повтор не исправит (неизвестный статус, чужой платеж),
    401 при неверной подписи и 503, если синхронная часть не уложилась в таймаут или упала база:
    повтор от шлюза безопасен благодаря идемпотентности сверки.
    Таймаут покрывает только работу до коммита заказа, оповещения идут после него
    """
    gateways: Mapping[str, PaymentGateway]
    payments: PaymentService
    reconciler: OrderReconciler
    timeout: float = settings.webhook_timeout

    async def handle(self, body: bytes, headers: Mapping[str, str], query: Mapping[str, str]) -> IngestResult:
        try:
            payload = json.loads(body)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            logger.warning('webhook body is not a json object, rejecting')
            raise UnauthorizedError('webhook can\'t be verified')

        gateway = self._detect(payload, headers)
        if gateway is None or not gateway.verify(payload, headers, query):
            # Заголовку вроде x-webhook-source не доверяем, только подписи
            logger.warning(f'webhook verification failed (gateway: {gateway.name if gateway else None})')
            raise UnauthorizedError('webhook signature is invalid')

        try:
            async with asyncio.timeout(self.timeout):
                event = await gateway.parse_event(payload)
                if event is None:
                    return IngestResult(action='ignored')
                result = await self._apply(event)
        except TimeoutError as e:
            logger.error(f'{gateway.name} webhook wasn\'t processed in {self.timeout}s')
            raise ReconciliationError('webhook processing timed out') from e
        except GatewayError as e:
            logger.error(f'{gateway.name} webhook: {e}')
            raise ReconciliationError('payment gateway is unavailable') from e
        except SQLAlchemyError as e:
            logger.exception(f'{gateway.name} webhook: database failure')
            raise ReconciliationError('payment status couldn\'t be stored') from e

        await self._notify(result)
        return result

    async def apply_event(self, event: PaymentEvent) -> IngestResult:
        """Общий путь для подтверждения клиентом и опроса зависших платежей"""
        result = await self._apply(event)
        await self._notify(result)
        return result

    async def refresh(self, external_id: str, gateway_name: str) -> IngestResult:
        """Запрашивает актуальный статус у шлюза; статусу от клиента не доверяем"""
        gateway = self.gateways.get(gateway_name)
        if gateway is None:
            raise ValidationError(f'gateway "{gateway_name}" is not configured')

        try:
            event = await gateway.fetch_event(external_id)
        except GatewayError as e:
            raise ReconciliationError(str(e)) from e

        try:
            return await self.apply_event(event)
        except SQLAlchemyError as e:
            logger.exception(f'{gateway_name} payment {external_id}: database failure')
            raise ReconciliationError('payment status couldn\'t be stored') from e

    async def _apply(self, event: PaymentEvent) -> IngestResult:
        if event.status is None:
            logger.warning(f'{event.gateway} payment {event.external_id} has unknown status "{event.raw_status}", ignoring')
            return IngestResult(action='unknown_status')

        try:
            payment = await self.payments.set_status(
                event.external_id,
                event.status,
                status_message=event.status_message,
                payload=_jsonable(event.payload)
            )
        except NotFoundError:
            logger.warning(f'{event.gateway} payment {event.external_id} is unknown, ignoring')
            return IngestResult(action='unknown_payment')

        if payment.status != 'approved':
            return IngestResult(action='status_updated', payment=payment)

        try:
            reconciliation = await self.reconciler.reconcile(payment.id)
        except ValidationError as e:
            # Повтор не поможет, поэтому не заставляем шлюз повторять
            logger.error(f'approved payment {payment.external_id} can\'t be turned into an order: {e.message}')
            return IngestResult(action='order_rejected', payment=payment)

        return IngestResult(
            action='order_reconciled',
            payment=payment,
            order=reconciliation.order,
            created=reconciliation.created
        )

    async def _notify(self, result: IngestResult) -> None:
        if result.created and result.order is not None:
            await self.reconciler.notify(result.order, result.payment.payer_email if result.payment else None)

    def _detect(self, payload: Mapping[str, Any], headers: Mapping[str, str]) -> PaymentGateway | None:
        for gateway in self.gateways.values():
            if gateway.matches(payload, headers):
                return gateway
        return None


def _jsonable(payload: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(payload, default=str))


def get_webhook_ingest(
    gateways: Annotated[dict[str, PaymentGateway], Depends(get_gateways)],
    payments: Annotated[PaymentService, Depends(get_payment_service)],
    reconciler: Annotated[OrderReconciler, Depends(get_order_reconciler)]
) -> WebhookIngest:
    return WebhookIngest(gateways=gateways, payments=payments, reconciler=reconciler)
