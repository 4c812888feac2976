import asyncio
import logging
import anyio
from datetime import datetime, timedelta
from sqlalchemy.exc import SQLAlchemyError

from errors import AppError
from services.webhook import WebhookIngest
from settings import settings


logger = logging.getLogger('neosale-worker-pending-payments-loop')


async def refresh_pending_payments(ingest: WebhookIngest, limiter: anyio.CapacityLimiter) -> int:
    """Один проход: спрашивает шлюз о каждом зависшем платеже, возвращает число проверенных"""
    async def check_payment(external_id: str, gateway: str):
        async with limiter:
            try:
                result = await ingest.refresh(external_id, gateway)
            except AppError as e:
                logger.warning(f'couldn\'t refresh {gateway} payment {external_id}: {e.message}')
                return
            except Exception:
                # Один платеж не должен останавливать проход и весь воркер
                logger.exception(f'couldn\'t refresh {gateway} payment {external_id}')
                return

            if result.action != 'status_updated' or result.payment is None or result.payment.status != 'pending':
                logger.info(f'{gateway} payment {external_id}: {result.action}')

    older_than = datetime.now() - timedelta(seconds=settings.pending_payment_min_age)
    pending = await ingest.payments.pending_external_ids(older_than)

    async with anyio.create_task_group() as tg:
        for external_id, gateway in pending:
            tg.start_soon(check_payment, external_id, gateway)

    return len(pending)


# Подстраховка на случай потерянных веб-хуков
async def pending_payments_loop(ingest: WebhookIngest):
    limiter = anyio.CapacityLimiter(settings.pending_payments_polling_concurrency)

    while True:
        try:
            await refresh_pending_payments(ingest, limiter)
        except SQLAlchemyError:
            logger.exception('couldn\'t load pending payments')

        await asyncio.sleep(settings.pending_payments_polling_interval)
