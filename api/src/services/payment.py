import logging
from fastapi import Depends
from datetime import datetime
from uuid import UUID, uuid4
from decimal import Decimal
from typing import Annotated, Any
from dataclasses import dataclass
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

import db.postgres
import tables
from errors import DuplicateError, NotFoundError, ValidationError
from services.coupon import normalize_code
from tables.payment import Gateway
from settings import settings


logger = logging.getLogger('neosale-payments')


# Платеж не откатывается назад: поздние или переставленные события шлюза игнорируются
PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    'pending': frozenset({'approved', 'declined', 'error', 'voided'}),
    'error': frozenset({'approved', 'declined', 'voided'}),
    'approved': frozenset({'voided'}),
    'declined': frozenset(),
    'voided': frozenset(),
}


class CheckoutItemIn(BaseModel):
    product_id: int
    variant_id: int | None = None
    name: str
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)


class CheckoutIn(BaseModel):
    transaction_id: str = Field(min_length=1)
    gateway: Gateway
    method: str
    amount: Decimal = Field(gt=0)
    currency: str = Field(default=settings.currency)
    user_id: UUID
    payer_email: str | None = None
    shipping_address_id: int | None = None
    coupon_code: str | None = None
    items: list[CheckoutItemIn] = Field(min_length=1)


@dataclass(frozen=True)
class PaymentService:
    session_maker: async_sessionmaker[AsyncSession]

    async def register(self, checkout: CheckoutIn) -> tables.Payment:
        """Фиксирует попытку оплаты вместе со снимком корзины"""
        payment_id = uuid4()
        now = datetime.now()

        try:
            async with self.session_maker() as session, session.begin():
                coupon_id = None
                if checkout.coupon_code:
                    coupon_id = await session.scalar(
                        select(tables.Coupon.id)
                        .where(tables.Coupon.code == normalize_code(checkout.coupon_code))
                    )
                    if coupon_id is None:
                        raise ValidationError(f'coupon "{checkout.coupon_code}" doesn\'t exist')

                session.add(tables.Payment(
                    id=payment_id,
                    external_id=checkout.transaction_id,
                    gateway=checkout.gateway,
                    method=checkout.method,
                    status='pending',
                    created_at=now,
                    updated_at=now,
                    amount=checkout.amount,
                    currency=checkout.currency,
                    user_id=checkout.user_id,
                    payer_email=checkout.payer_email,
                    shipping_address_id=checkout.shipping_address_id,
                    coupon_id=coupon_id
                ))
                await session.flush()

                session.add_all([
                    tables.CheckoutItem(
                        id=uuid4(),
                        payment_id=payment_id,
                        product_id=item.product_id,
                        variant_id=item.variant_id,
                        name=item.name,
                        quantity=item.quantity,
                        unit_price=item.unit_price
                    )
                    for item in checkout.items
                ])
        except IntegrityError as e:
            raise DuplicateError(f'payment with transaction id "{checkout.transaction_id}" already exists') from e

        logger.info(f'registered {checkout.gateway} payment {checkout.transaction_id}')
        return await self.get(checkout.transaction_id)

    async def get(self, external_id: str) -> tables.Payment:
        async with self.session_maker() as session:
            payment = await session.scalar(
                select(tables.Payment)
                .where(tables.Payment.external_id == external_id)
            )
        if payment is None:
            raise NotFoundError(f'payment {external_id} doesn\'t exist')
        return payment

    async def set_status(
        self,
        external_id: str,
        status: str,
        status_message: str | None = None,
        payload: dict[str, Any] | None = None
    ) -> tables.Payment:
        if status not in PAYMENT_TRANSITIONS:
            raise ValidationError(f'unknown payment status "{status}"')

        async with self.session_maker() as session, session.begin():
            payment = await session.scalar(
                select(tables.Payment)
                .where(tables.Payment.external_id == external_id)
                .with_for_update()
            )
            if payment is None:
                raise NotFoundError(f'payment {external_id} doesn\'t exist')

            if payment.status == status:
                return payment

            if status not in PAYMENT_TRANSITIONS[payment.status]:
                logger.warning(f'payment {external_id} is "{payment.status}", ignoring late status "{status}"')
                return payment

            await session.execute(
                update(tables.Payment)
                .where(tables.Payment.id == payment.id)
                .values({
                    tables.Payment.status: status,
                    tables.Payment.status_message: status_message,
                    tables.Payment.raw_gateway_payload: payload,
                    tables.Payment.updated_at: datetime.now()
                })
            )
            await session.refresh(payment)

        logger.info(f'payment {external_id} is now "{status}"')
        return payment

    async def pending_external_ids(self, older_than: datetime, limit: int = 100) -> list[tuple[str, str]]:
        async with self.session_maker() as session:
            return [
                (row.external_id, row.gateway)
                for row in (await session.execute(
                    select(tables.Payment.external_id, tables.Payment.gateway)
                    .where(tables.Payment.status == 'pending', tables.Payment.created_at < older_than)
                    .order_by(tables.Payment.created_at)
                    .limit(limit)
                )).all()
            ]


def get_payment_service(
    session_maker: Annotated[async_sessionmaker[AsyncSession], Depends(db.postgres.get_session_maker)]
) -> PaymentService:
    return PaymentService(session_maker=session_maker)
