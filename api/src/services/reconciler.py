import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Annotated
from uuid import UUID, uuid4
from dataclasses import dataclass, field
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

import db.postgres
import tables
from errors import NotFoundError, ReconciliationError, ValidationError
from services.checkout import CheckoutStore
from services.coupon import CouponLedger, CouponValidator
from services.pricing import PricingService, items_subtotal, get_pricing_service
from services.notifications import OrderNotifier, get_notifier
from settings import settings


logger = logging.getLogger('neosale-reconciler')


@dataclass(frozen=True)
class OrderDraft:
    subtotal: Decimal
    discount: Decimal
    coupon_id: UUID | None
    shipping_cost: Decimal
    taxes: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount + self.shipping_cost + self.taxes


@dataclass(frozen=True)
class Reconciliation:
    order: tables.Order
    # False, если заказ уже существовал
    created: bool
    payer_email: str | None = None


@dataclass(frozen=True)
class OrderReconciler:
    """
    Создает заказ по одобренному платежу.

    Повторный вызов для того же платежа (дубль веб-хука, гонка клиента и веб-хука, ручной повтор)
    возвращает уже существующий заказ. Гарантия держится на уникальности order.payment_id:
    из двух параллельных транзакций одна вставит заказ, вторая получит IntegrityError и вернет его же
    """
    session_maker: async_sessionmaker[AsyncSession]
    coupon_validator: CouponValidator
    pricing: PricingService
    notifier: OrderNotifier
    checkout_store: CheckoutStore = field(default_factory=CheckoutStore)
    coupon_ledger: CouponLedger = field(default_factory=CouponLedger)
    notification_timeout: float = settings.notification_timeout

    async def reconcile_from_payment(
        self,
        payment_ref: UUID | str,
        shipping_address_id: int | None = None,
        coupon_id: UUID | None = None
    ) -> tables.Order:
        result = await self.reconcile(payment_ref, shipping_address_id, coupon_id)
        if result.created:
            await self.notify(result.order, result.payer_email)
        return result.order

    async def reconcile(
        self,
        payment_ref: UUID | str,
        shipping_address_id: int | None = None,
        coupon_id: UUID | None = None
    ) -> Reconciliation:
        """Все, кроме оповещений: их вызывающий отправляет сам через `notify`, когда created=True"""
        async with self.session_maker() as session:
            payment = await self._get_payment(session, payment_ref)
            session.expunge(payment)

            existing = await self._find_order_id(session, payment.id)
            if existing is not None:
                logger.info(f'payment {payment.id} is already reconciled into order {existing}')
                return Reconciliation(order=await self._load_order(existing), created=False)

            if payment.status != 'approved':
                raise ValidationError(f'payment {payment.external_id} is "{payment.status}", only approved payments produce orders')

            items = await self.checkout_store.get_items(session, payment.id)

        if not items:
            raise ValidationError(f'payment {payment.external_id} has no checkout items')

        if shipping_address_id is None:
            shipping_address_id = payment.shipping_address_id
        if coupon_id is None:
            coupon_id = payment.coupon_id

        draft = await self._price(items, shipping_address_id, coupon_id)
        order_id, created = await self._persist(payment, items, shipping_address_id, draft)

        return Reconciliation(
            order=await self._load_order(order_id),
            created=created,
            payer_email=payment.payer_email
        )

    async def _price(
        self,
        items: list[tables.CheckoutItem],
        shipping_address_id: int | None,
        coupon_id: UUID | None
    ) -> OrderDraft:
        subtotal = items_subtotal(items)
        if subtotal <= 0:
            raise ValidationError('order subtotal must be greater than zero')

        discount = Decimal('0')
        applied_coupon_id = None
        if coupon_id is not None:
            # Скидку пересчитываем сами, присланной клиентом не доверяем
            validation = await self.coupon_validator.validate_by_id(coupon_id, subtotal)
            if validation.valid:
                discount = validation.discount_amount or Decimal('0')
                applied_coupon_id = coupon_id
            else:
                logger.warning(f'coupon {coupon_id} rejected ({validation.reason}), order falls back to no discount')

        charges = self.pricing.charges(shipping_address_id, items)
        draft = OrderDraft(
            subtotal=subtotal,
            discount=discount,
            coupon_id=applied_coupon_id,
            shipping_cost=charges.shipping_cost,
            taxes=charges.taxes
        )
        if draft.total < 0:
            raise ValidationError(f'order total is negative ({draft.total})')

        return draft

    async def _persist(
        self,
        payment: tables.Payment,
        items: list[tables.CheckoutItem],
        shipping_address_id: int | None,
        draft: OrderDraft
    ) -> tuple[UUID, bool]:
        order_id = uuid4()
        now = datetime.now()

        try:
            async with self.session_maker() as session, session.begin():
                session.add(tables.Order(
                    id=order_id,
                    user_id=payment.user_id,
                    payment_id=payment.id,
                    coupon_id=draft.coupon_id,
                    shipping_address_id=shipping_address_id,
                    status='paid',
                    subtotal=draft.subtotal,
                    discount=draft.discount,
                    shipping_cost=draft.shipping_cost,
                    taxes=draft.taxes,
                    total=draft.total,
                    currency=payment.currency,
                    created_at=now,
                    updated_at=now,
                    paid_at=now
                ))
                await session.flush()

                session.add_all([
                    tables.OrderItem(
                        id=uuid4(),
                        order_id=order_id,
                        product_id=item.product_id,
                        variant_id=item.variant_id,
                        name=item.name,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        subtotal=item.unit_price * item.quantity
                    )
                    for item in items
                ])
                session.add(tables.OrderLog(
                    id=uuid4(),
                    order_id=order_id,
                    previous_status=None,
                    new_status='paid',
                    note=f'created from payment {payment.external_id}',
                    created_at=now
                ))

                if draft.coupon_id is not None:
                    await self.coupon_ledger.redeem(session, draft.coupon_id)
        except IntegrityError as e:
            async with self.session_maker() as session:
                existing = await self._find_order_id(session, payment.id)
            if existing is None:
                raise ReconciliationError(f'couldn\'t store order for payment {payment.external_id}') from e

            logger.info(f'payment {payment.id} was reconciled concurrently into order {existing}')
            return existing, False
        except (SQLAlchemyError, ValidationError) as e:
            raise ReconciliationError(f'couldn\'t store order for payment {payment.external_id}') from e

        logger.info(f'order {order_id} created from payment {payment.external_id}, total {draft.total}')
        return order_id, True

    async def notify(self, order: tables.Order, payer_email: str | None) -> None:
        """Заказ уже закоммичен, поэтому ошибки и таймаут оповещений только логируются"""
        try:
            async with asyncio.timeout(self.notification_timeout):
                await self.notifier.order_created(order, payer_email)
        except TimeoutError:
            logger.error(f'notification about order {order.id} wasn\'t sent in {self.notification_timeout}s')
        except Exception:
            logger.exception(f'notification about order {order.id} failed')

    async def _get_payment(self, session: AsyncSession, payment_ref: UUID | str) -> tables.Payment:
        payment = None
        if isinstance(payment_ref, UUID):
            payment = await session.get(tables.Payment, payment_ref)
        if payment is None:
            payment = await session.scalar(
                select(tables.Payment)
                .where(tables.Payment.external_id == str(payment_ref))
            )

        if payment is None:
            raise NotFoundError(f'payment {payment_ref} doesn\'t exist')
        return payment

    async def _find_order_id(self, session: AsyncSession, payment_id: UUID) -> UUID | None:
        return await session.scalar(
            select(tables.Order.id)
            .where(tables.Order.payment_id == payment_id)
        )

    async def _load_order(self, order_id: UUID) -> tables.Order:
        async with self.session_maker() as session:
            return (await session.execute(
                select(tables.Order)
                .where(tables.Order.id == order_id)
                .options(selectinload(tables.Order.items), selectinload(tables.Order.logs))
            )).scalar_one()


def get_order_reconciler(
    session_maker: Annotated[async_sessionmaker[AsyncSession], Depends(db.postgres.get_session_maker)],
    pricing: Annotated[PricingService, Depends(get_pricing_service)],
    notifier: Annotated[OrderNotifier, Depends(get_notifier)]
) -> OrderReconciler:
    return OrderReconciler(
        session_maker=session_maker,
        coupon_validator=CouponValidator(session_maker=session_maker),
        pricing=pricing,
        notifier=notifier
    )
