import json
import logging
import httpx
import aiokafka
from aiokafka.errors import KafkaError
from fastapi import Request
from dataclasses import dataclass

import tables
from settings import settings, kafka_settings, mailgun_settings


logger = logging.getLogger('neosale-notifications')


def order_event(order: tables.Order) -> dict:
    return {
        'id': str(order.id),
        'user_id': str(order.user_id),
        'payment_id': str(order.payment_id),
        'status': order.status,
        'subtotal': str(order.subtotal),
        'discount': str(order.discount),
        'shipping_cost': str(order.shipping_cost),
        'taxes': str(order.taxes),
        'total': str(order.total),
        'currency': order.currency
    }


@dataclass(frozen=True)
class OrderNotifier:
    kafka_producer: aiokafka.AIOKafkaProducer | None = None
    mail_client: httpx.AsyncClient | None = None

    async def order_created(self, order: tables.Order, payer_email: str | None) -> None:
        """Оповещения не влияют на заказ: он уже закоммичен, ошибки только логируются"""
        if self.kafka_producer is not None:
            try:
                await self.kafka_producer.send_and_wait(
                    topic=kafka_settings.orders_topic,
                    key=str(order.id).encode(),
                    value=json.dumps({'event': 'order.created', 'order': order_event(order)}).encode()
                )
                logger.info(f'sent notification about order {order.id} to the "{kafka_settings.orders_topic}" topic')
            except KafkaError:
                logger.exception(f'couldn\'t publish notification about order {order.id}')

        if self.mail_client is not None and payer_email:
            await self._send_confirmation(order, payer_email)

    async def _send_confirmation(self, order: tables.Order, payer_email: str) -> None:
        # https://documentation.mailgun.com/docs/mailgun/api-reference/openapi-final/tag/Messages/
        error_msg = None
        try:
            response = await self.mail_client.post(
                url=f'/v3/{mailgun_settings.domain}/messages',
                data={
                    'from': mailgun_settings.sender,
                    'to': payer_email,
                    'subject': f'Pedido {order.id} confirmado',
                    'text': (
                        f'Recibimos tu pago. Pedido {order.id}\n'
                        f'Total: {order.total} {order.currency}'
                    )
                },
                timeout=settings.notification_timeout
            )
            if response.status_code != 200:
                error_msg = f'got status {response.status_code} from mailgun for order {order.id}'
        except httpx.HTTPError as e:
            error_msg = f'couldn\'t send confirmation for order {order.id}: {e!r}'

        if error_msg is not None:
            logger.warning(error_msg)


def get_notifier(request: Request) -> OrderNotifier:
    return request.app.state.notifier
