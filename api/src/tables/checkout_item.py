from uuid import UUID
from decimal import Decimal
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import ForeignKey

from .base import Base
from .payment import Payment


class CheckoutItem(Base):
    __tablename__ = 'checkout_item'

    id: Mapped[UUID] = mapped_column(primary_key=True)
    payment_id: Mapped[UUID] = mapped_column(ForeignKey(Payment.id, ondelete='CASCADE'), index=True)
    product_id: Mapped[int] = mapped_column()
    variant_id: Mapped[int | None] = mapped_column(nullable=True)
    name: Mapped[str] = mapped_column()
    quantity: Mapped[int] = mapped_column()
    unit_price: Mapped[Decimal] = mapped_column()
