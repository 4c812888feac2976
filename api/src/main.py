import httpx
import logging
import aiokafka
from contextlib import asynccontextmanager, AsyncExitStack
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

import db.postgres
from errors import AppError
from gateways import WompiGateway, MercadoPagoGateway
from services.notifications import OrderNotifier
from api.v1 import coupons, orders, payment, webhooks
from settings import pg_settings, kafka_settings, wompi_settings, mercadopago_settings, mailgun_settings


logger = logging.getLogger('neosale-api')

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(name)s %(levelname)s: %(message)s'
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with AsyncExitStack() as stack:
        engine = db.postgres.create_engine(pg_settings.get_url('psycopg'))
        stack.push_async_callback(engine.dispose)
        app.state.session_maker = db.postgres.create_session_maker(engine)

        wompi_client = await stack.enter_async_context(httpx.AsyncClient(
            base_url=wompi_settings.base_url,
            timeout=wompi_settings.connection_timeout_sec
        ))
        mercadopago_client = await stack.enter_async_context(httpx.AsyncClient(
            base_url=mercadopago_settings.base_url,
            headers={'Authorization': f'Bearer {mercadopago_settings.access_token}'},
            timeout=mercadopago_settings.connection_timeout_sec
        ))
        app.state.gateways = {
            'wompi': WompiGateway(client=wompi_client, events_secret=wompi_settings.events_secret),
            'mercadopago': MercadoPagoGateway(client=mercadopago_client, webhook_secret=mercadopago_settings.webhook_secret)
        }

        kafka_producer = None
        if kafka_settings.bootstrap_servers:
            kafka_producer = aiokafka.AIOKafkaProducer(bootstrap_servers=kafka_settings.bootstrap_servers)
            await kafka_producer.start()
            stack.push_async_callback(kafka_producer.stop)

        mail_client = None
        if mailgun_settings.api_key:
            mail_client = await stack.enter_async_context(httpx.AsyncClient(
                base_url=mailgun_settings.base_url,
                auth=httpx.BasicAuth('api', mailgun_settings.api_key)
            ))

        app.state.notifier = OrderNotifier(kafka_producer=kafka_producer, mail_client=mail_client)
        logger.info('api is started')

        yield


app = FastAPI(
    title='NeoSale Orders',
    lifespan=lifespan,
    docs_url='/api/openapi',
    openapi_url='/api/openapi.json',
    default_response_class=ORJSONResponse
)

app.include_router(orders.router, prefix='/api/v1/orders', tags=['orders'])
app.include_router(payment.router, prefix='/api/v1/payments', tags=['payments'])
app.include_router(webhooks.router, prefix='/api/v1/webhooks', tags=['webhooks'])
app.include_router(coupons.router, prefix='/api/v1/coupons', tags=['coupons'])


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> ORJSONResponse:
    if exc.status_code >= 500:
        logger.error(f'{request.method} {request.url.path}: {exc.message}')
    return ORJSONResponse(
        status_code=exc.status_code,
        content={'success': False, 'message': exc.message, 'code': exc.code}
    )
