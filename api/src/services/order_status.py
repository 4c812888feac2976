import logging
from datetime import datetime
from typing import Annotated, get_args
from uuid import UUID, uuid4
from dataclasses import dataclass
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

import db.postgres
import tables
from tables.order import Status
from errors import InvalidTransitionError, NotFoundError, ValidationError


logger = logging.getLogger('neosale-order-status')


ORDER_STATUSES: tuple[str, ...] = get_args(Status)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    'pending': frozenset({'paid', 'cancelled'}),
    'paid': frozenset({'processing', 'cancelled'}),
    'processing': frozenset({'shipped', 'cancelled'}),
    'shipped': frozenset({'delivered'}),
    'delivered': frozenset(),
    'cancelled': frozenset(),
}

_TIMESTAMP_FIELDS = {
    'paid': 'paid_at',
    'shipped': 'shipped_at',
    'delivered': 'delivered_at',
    'cancelled': 'cancelled_at',
}


def can_transition(current: str, target: str) -> bool:
    return target == current or target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(order: tables.Order, target: str, now: datetime | None = None) -> tables.Order:
    """
    Переводит заказ в `target`.
    Повторный запрос текущего статуса - успешный no-op, любой другой переход вне таблицы
    завершается InvalidTransitionError, заказ при этом не меняется
    """
    if target not in ORDER_STATUSES:
        raise ValidationError(f'unknown order status "{target}"')

    if target == order.status:
        return order

    if target not in ALLOWED_TRANSITIONS[order.status]:
        raise InvalidTransitionError(order.status, target)

    now = now or datetime.now()
    order.status = target
    order.updated_at = now
    if field := _TIMESTAMP_FIELDS.get(target):
        setattr(order, field, now)

    return order


@dataclass(frozen=True)
class OrderStatusService:
    session_maker: async_sessionmaker[AsyncSession]

    async def change_status(self, order_id: UUID, target: str, note: str | None = None) -> tables.Order:
        async with self.session_maker() as session, session.begin():
            order = await session.scalar(
                select(tables.Order)
                .where(tables.Order.id == order_id)
                .with_for_update()
            )
            if order is None:
                raise NotFoundError(f'order {order_id} doesn\'t exist')

            previous = order.status
            transition(order, target)

            if order.status != previous:
                session.add(tables.OrderLog(
                    id=uuid4(),
                    order_id=order.id,
                    previous_status=previous,
                    new_status=order.status,
                    note=note,
                    created_at=order.updated_at
                ))
                logger.info(f'order {order.id} moved from "{previous}" to "{order.status}"')

        return await self.get(order_id)

    async def get(self, order_id: UUID) -> tables.Order:
        async with self.session_maker() as session:
            order = await session.scalar(
                select(tables.Order)
                .where(tables.Order.id == order_id)
                .options(selectinload(tables.Order.items), selectinload(tables.Order.logs))
            )
        if order is None:
            raise NotFoundError(f'order {order_id} doesn\'t exist')
        return order

    async def list_for_user(self, user_id: UUID, limit: int = 50) -> list[tables.Order]:
        """Заказы пользователя, новые первыми"""
        async with self.session_maker() as session:
            return list((await session.scalars(
                select(tables.Order)
                .where(tables.Order.user_id == user_id)
                .order_by(tables.Order.created_at.desc())
                .limit(limit)
                .options(selectinload(tables.Order.items), selectinload(tables.Order.logs))
            )).all())


def get_order_status_service(
    session_maker: Annotated[async_sessionmaker[AsyncSession], Depends(db.postgres.get_session_maker)]
) -> OrderStatusService:
    return OrderStatusService(session_maker=session_maker)
