import httpx
import aiokafka
import logging
import anyio

import db.postgres
from gateways import WompiGateway, MercadoPagoGateway
from services.coupon import CouponValidator
from services.notifications import OrderNotifier
from services.payment import PaymentService
from services.pricing import PricingService
from services.reconciler import OrderReconciler
from services.webhook import WebhookIngest
from settings import pg_settings, kafka_settings, wompi_settings, mercadopago_settings, mailgun_settings
from .poll_payments import pending_payments_loop


logger = logging.getLogger('neosale-worker')


def create_mail_client() -> httpx.AsyncClient | None:
    if not mailgun_settings.api_key:
        return None
    return httpx.AsyncClient(
        base_url=mailgun_settings.base_url,
        auth=httpx.BasicAuth('api', mailgun_settings.api_key)
    )


async def run():
    engine = db.postgres.create_engine(pg_settings.get_url('psycopg'))
    session_maker = db.postgres.create_session_maker(engine)

    wompi_client = httpx.AsyncClient(
        base_url=wompi_settings.base_url,
        timeout=wompi_settings.connection_timeout_sec
    )
    mercadopago_client = httpx.AsyncClient(
        base_url=mercadopago_settings.base_url,
        headers={'Authorization': f'Bearer {mercadopago_settings.access_token}'},
        timeout=mercadopago_settings.connection_timeout_sec
    )
    # Заказы, созданные воркером после потерянного веб-хука, тоже подтверждаются письмом
    mail_client = create_mail_client()

    kafka_producer = None
    if kafka_settings.bootstrap_servers:
        kafka_producer = aiokafka.AIOKafkaProducer(bootstrap_servers=kafka_settings.bootstrap_servers)
        await kafka_producer.start()

    ingest = WebhookIngest(
        gateways={
            'wompi': WompiGateway(client=wompi_client, events_secret=wompi_settings.events_secret),
            'mercadopago': MercadoPagoGateway(client=mercadopago_client, webhook_secret=mercadopago_settings.webhook_secret)
        },
        payments=PaymentService(session_maker=session_maker),
        reconciler=OrderReconciler(
            session_maker=session_maker,
            coupon_validator=CouponValidator(session_maker=session_maker),
            pricing=PricingService(),
            notifier=OrderNotifier(kafka_producer=kafka_producer, mail_client=mail_client)
        )
    )

    try:
        async with anyio.create_task_group() as tg:
            tg.start_soon(pending_payments_loop, ingest)

            logger.info('worker is started')
    finally:
        if kafka_producer is not None:
            await kafka_producer.stop()
        if mail_client is not None:
            await mail_client.aclose()
        await wompi_client.aclose()
        await mercadopago_client.aclose()
        await engine.dispose()
