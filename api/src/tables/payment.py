from .base import Base
from typing import Any, Literal
from datetime import datetime
from uuid import UUID
from decimal import Decimal
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column


Status = Literal['pending', 'approved', 'declined', 'error', 'voided']
Gateway = Literal['wompi', 'mercadopago']


class Payment(Base):
    __tablename__ = 'payment'

    id: Mapped[UUID] = mapped_column(primary_key=True)
    external_id: Mapped[str] = mapped_column(unique=True)
    gateway: Mapped[Gateway] = mapped_column(String)
    method: Mapped[str] = mapped_column()
    status: Mapped[Status] = mapped_column(String, index=True)
    status_message: Mapped[str | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(index=True)
    updated_at: Mapped[datetime] = mapped_column()

    amount: Mapped[Decimal] = mapped_column()
    currency: Mapped[str] = mapped_column()

    # Данные чекаута, из которых будет собран заказ
    user_id: Mapped[UUID] = mapped_column(index=True)
    payer_email: Mapped[str | None] = mapped_column(nullable=True)
    shipping_address_id: Mapped[int | None] = mapped_column(nullable=True)
    coupon_id: Mapped[UUID | None] = mapped_column(nullable=True)

    raw_gateway_payload: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
