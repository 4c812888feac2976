from .base import Base
from typing import Literal
from datetime import datetime
from uuid import UUID
from decimal import Decimal
from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column


DiscountType = Literal['percentage', 'fixed']


class Coupon(Base):
    __tablename__ = 'coupon'
    __table_args__ = (
        CheckConstraint('usage_limit IS NULL OR usage_count <= usage_limit', name='coupon_usage_within_limit'),
        CheckConstraint('discount_type != \'percentage\' OR discount_value <= 100', name='coupon_percentage_le_100'),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True)
    # Хранится в верхнем регистре
    code: Mapped[str] = mapped_column(unique=True)
    name: Mapped[str] = mapped_column()
    discount_type: Mapped[DiscountType] = mapped_column(String)
    discount_value: Mapped[Decimal] = mapped_column()
    min_purchase_amount: Mapped[Decimal] = mapped_column(default=Decimal('0'))
    usage_limit: Mapped[int | None] = mapped_column(nullable=True)
    usage_count: Mapped[int] = mapped_column(default=0)
    active: Mapped[bool] = mapped_column(default=True)
    expires_at: Mapped[datetime] = mapped_column()
    created_at: Mapped[datetime] = mapped_column()
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
