from .base import Base
from typing import Literal
from datetime import datetime
from uuid import UUID
from decimal import Decimal
from sqlalchemy import CheckConstraint, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .payment import Payment
from .coupon import Coupon


Status = Literal['pending', 'paid', 'processing', 'shipped', 'delivered', 'cancelled']


class Order(Base):
    __tablename__ = 'order'
    __table_args__ = (
        CheckConstraint('total >= 0', name='order_total_non_negative'),
        CheckConstraint('discount <= subtotal', name='order_discount_le_subtotal'),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True)
    user_id: Mapped[UUID] = mapped_column(index=True)
    # Один заказ на один платеж, на этом держится идемпотентность
    payment_id: Mapped[UUID] = mapped_column(ForeignKey(Payment.id, ondelete='RESTRICT'), unique=True)
    coupon_id: Mapped[UUID | None] = mapped_column(ForeignKey(Coupon.id, ondelete='RESTRICT'), nullable=True)
    shipping_address_id: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[Status] = mapped_column(String, index=True)

    subtotal: Mapped[Decimal] = mapped_column()
    discount: Mapped[Decimal] = mapped_column()
    shipping_cost: Mapped[Decimal] = mapped_column()
    taxes: Mapped[Decimal] = mapped_column()
    total: Mapped[Decimal] = mapped_column()
    currency: Mapped[str] = mapped_column()

    created_at: Mapped[datetime] = mapped_column(index=True)
    updated_at: Mapped[datetime] = mapped_column()
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    items: Mapped[list['OrderItem']] = relationship(back_populates='order', order_by='OrderItem.product_id')
    logs: Mapped[list['OrderLog']] = relationship(order_by='OrderLog.created_at')


class OrderItem(Base):
    __tablename__ = 'order_item'

    id: Mapped[UUID] = mapped_column(primary_key=True)
    order_id: Mapped[UUID] = mapped_column(ForeignKey(Order.id, ondelete='CASCADE'), index=True)
    product_id: Mapped[int] = mapped_column()
    variant_id: Mapped[int | None] = mapped_column(nullable=True)
    name: Mapped[str] = mapped_column()
    quantity: Mapped[int] = mapped_column()
    # Цена копируется, последующие изменения цен на заказ не влияют
    unit_price: Mapped[Decimal] = mapped_column()
    subtotal: Mapped[Decimal] = mapped_column()

    order: Mapped[Order] = relationship(back_populates='items')
