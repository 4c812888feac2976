from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import tables


class CheckoutStore:
    """Снимок позиций, зафиксированный при старте оплаты"""

    async def get_items(self, session: AsyncSession, payment_id: UUID) -> list[tables.CheckoutItem]:
        return list((await session.scalars(
            select(tables.CheckoutItem)
            .where(tables.CheckoutItem.payment_id == payment_id)
            .order_by(tables.CheckoutItem.product_id)
        )).all())
