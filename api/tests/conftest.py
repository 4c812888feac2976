import sys
import pathlib
import pytest
import httpx
from decimal import Decimal
from datetime import datetime, timedelta
from uuid import UUID, uuid4
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

sys.path.append(str(pathlib.Path(__file__).parent.parent/'src'))
sys.path.append(str(pathlib.Path(__file__).parent))

import tables
import db.postgres
from main import app
from gateways import WompiGateway, MercadoPagoGateway, get_gateways
from services.coupon import CouponValidator
from services.notifications import get_notifier
from services.pricing import PricingService
from services.reconciler import OrderReconciler
from gateway_payloads import WOMPI_EVENTS_SECRET, MERCADOPAGO_WEBHOOK_SECRET


WOMPI_BASE_URL = 'https://sandbox.wompi.co'
MERCADOPAGO_BASE_URL = 'https://api.mercadopago.com'


class RecordingNotifier:
    def __init__(self):
        self.orders: list[tuple[UUID, str | None]] = []

    async def order_created(self, order: tables.Order, payer_email: str | None) -> None:
        self.orders.append((order.id, payer_email))


@pytest.fixture
async def session_maker(tmp_path: pathlib.Path):
    # Отдельный файл, а не :memory:, чтобы параллельные сессии работали через разные соединения
    engine = create_async_engine(f'sqlite+aiosqlite:///{tmp_path/"neosale.db"}')
    async with engine.begin() as conn:
        await conn.run_sync(tables.Base.metadata.create_all)

    yield db.postgres.create_session_maker(engine)

    await engine.dispose()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def reconciler(session_maker: async_sessionmaker[AsyncSession], notifier: RecordingNotifier) -> OrderReconciler:
    return OrderReconciler(
        session_maker=session_maker,
        coupon_validator=CouponValidator(session_maker=session_maker),
        pricing=PricingService(),
        notifier=notifier
    )


@pytest.fixture
async def gateways():
    wompi_client = httpx.AsyncClient(base_url=WOMPI_BASE_URL)
    mercadopago_client = httpx.AsyncClient(base_url=MERCADOPAGO_BASE_URL)

    yield {
        'wompi': WompiGateway(client=wompi_client, events_secret=WOMPI_EVENTS_SECRET),
        'mercadopago': MercadoPagoGateway(client=mercadopago_client, webhook_secret=MERCADOPAGO_WEBHOOK_SECRET)
    }

    await wompi_client.aclose()
    await mercadopago_client.aclose()


@pytest.fixture
async def api_client(
    session_maker: async_sessionmaker[AsyncSession],
    notifier: RecordingNotifier,
    gateways: dict
):
    app.dependency_overrides[db.postgres.get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_gateways] = lambda: gateways

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url='http://tests') as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_coupon(session_maker: async_sessionmaker[AsyncSession]):
    async def make(
        code: str = 'SAVE10',
        discount_type: str = 'percentage',
        discount_value: Decimal = Decimal('10'),
        min_purchase_amount: Decimal = Decimal('50000'),
        usage_limit: int | None = 5,
        usage_count: int = 2,
        active: bool = True,
        expires_at: datetime | None = None,
        deleted_at: datetime | None = None
    ) -> tables.Coupon:
        coupon = tables.Coupon(
            id=uuid4(),
            code=code,
            name=code.title(),
            discount_type=discount_type,
            discount_value=discount_value,
            min_purchase_amount=min_purchase_amount,
            usage_limit=usage_limit,
            usage_count=usage_count,
            active=active,
            expires_at=expires_at or datetime.now() + timedelta(days=30),
            created_at=datetime.now(),
            deleted_at=deleted_at
        )
        async with session_maker() as session, session.begin():
            session.add(coupon)
        return coupon

    return make


@pytest.fixture
def make_payment(session_maker: async_sessionmaker[AsyncSession]):
    async def make(
        external_id: str | None = None,
        status: str = 'approved',
        gateway: str = 'wompi',
        items: list[tuple[int, int, Decimal]] | None = None,
        coupon_id: UUID | None = None,
        shipping_address_id: int | None = 7,
        payer_email: str | None = 'cliente@example.com',
        created_at: datetime | None = None,
        user_id: UUID | None = None
    ) -> tables.Payment:
        """`items` - список (product_id, quantity, unit_price)"""
        items = items if items is not None else [(1, 2, Decimal('30000')), (2, 1, Decimal('40000'))]
        now = created_at or datetime.now()

        payment = tables.Payment(
            id=uuid4(),
            external_id=external_id or f'{uuid4().hex[:8]}-1610641025-49201',
            gateway=gateway,
            method='CARD',
            status=status,
            created_at=now,
            updated_at=now,
            amount=sum((price * quantity for _, quantity, price in items), start=Decimal('0')),
            currency='COP',
            user_id=user_id or uuid4(),
            payer_email=payer_email,
            shipping_address_id=shipping_address_id,
            coupon_id=coupon_id
        )
        async with session_maker() as session, session.begin():
            session.add(payment)
            await session.flush()
            session.add_all([
                tables.CheckoutItem(
                    id=uuid4(),
                    payment_id=payment.id,
                    product_id=product_id,
                    variant_id=None,
                    name=f'Producto {product_id}',
                    quantity=quantity,
                    unit_price=price
                )
                for product_id, quantity, price in items
            ])
        return payment

    return make
