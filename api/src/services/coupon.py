import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated
from uuid import UUID
from dataclasses import dataclass
from fastapi import Depends
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

import db.postgres
import tables
from errors import ValidationError


logger = logging.getLogger('neosale-coupons')


REASON_NOT_FOUND = 'not found'
REASON_LIMIT_REACHED = 'limit reached'
REASON_MIN_PURCHASE = 'minimum purchase not met'


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(Decimal('1'), rounding=ROUND_HALF_UP)


def normalize_code(code: str) -> str:
    return code.strip().upper()


class CouponValidation(BaseModel):
    valid: bool
    coupon_id: UUID | None = None
    discount_amount: Decimal | None = None
    reason: str | None = None

    @classmethod
    def rejected(cls, reason: str) -> 'CouponValidation':
        return cls(valid=False, reason=reason)


def is_usable(coupon: tables.Coupon, now: datetime) -> bool:
    return coupon.active and coupon.deleted_at is None and coupon.expires_at > now


def evaluate(coupon: tables.Coupon | None, subtotal: Decimal, now: datetime) -> CouponValidation:
    """
    Проверяет купон против подтотала и считает скидку, ничего не меняя.
    Причины отказа проверяются в порядке: не найден/истек, исчерпан лимит, мала сумма покупки
    """
    if subtotal <= 0:
        raise ValidationError('subtotal must be greater than zero')

    if coupon is None or not is_usable(coupon, now):
        return CouponValidation.rejected(REASON_NOT_FOUND)

    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        return CouponValidation.rejected(REASON_LIMIT_REACHED)

    if subtotal < (coupon.min_purchase_amount or Decimal('0')):
        return CouponValidation.rejected(REASON_MIN_PURCHASE)

    if coupon.discount_type == 'percentage':
        discount = quantize_money(subtotal * coupon.discount_value / 100)
    elif coupon.discount_type == 'fixed':
        discount = coupon.discount_value
    else:
        logger.warning(f'coupon {coupon.id} has unknown discount type "{coupon.discount_type}", ignoring')
        return CouponValidation.rejected(REASON_NOT_FOUND)

    return CouponValidation(
        valid=True,
        coupon_id=coupon.id,
        discount_amount=max(min(discount, subtotal), Decimal('0'))
    )


@dataclass(frozen=True)
class CouponValidator:
    session_maker: async_sessionmaker[AsyncSession]

    async def validate(self, code: str, subtotal: Decimal) -> CouponValidation:
        if not code or not code.strip():
            raise ValidationError('coupon code is required')
        if subtotal <= 0:
            raise ValidationError('subtotal must be greater than zero')

        async with self.session_maker() as session:
            coupon = await session.scalar(
                select(tables.Coupon)
                .where(tables.Coupon.code == normalize_code(code))
            )

        return evaluate(coupon, subtotal, datetime.now())

    async def validate_by_id(self, coupon_id: UUID, subtotal: Decimal) -> CouponValidation:
        async with self.session_maker() as session:
            coupon = await session.get(tables.Coupon, coupon_id)

        return evaluate(coupon, subtotal, datetime.now())


class CouponLedger:
    """Единственное место, где меняется usage_count"""

    async def redeem(self, session: AsyncSession, coupon_id: UUID) -> None:
        # Лимит не перепроверяется: он проверен при валидации,
        # а от превышения при гонке защищает check constraint в той же транзакции
        result = await session.execute(
            update(tables.Coupon)
            .where(tables.Coupon.id == coupon_id)
            .values({tables.Coupon.usage_count: tables.Coupon.usage_count + 1})
        )
        if result.rowcount != 1:
            raise ValidationError(f'coupon {coupon_id} doesn\'t exist')


def get_coupon_validator(
    session_maker: Annotated[async_sessionmaker[AsyncSession], Depends(db.postgres.get_session_maker)]
) -> CouponValidator:
    return CouponValidator(session_maker=session_maker)
