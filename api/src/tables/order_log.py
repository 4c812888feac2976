from uuid import UUID
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import ForeignKey

from .base import Base
from .order import Order


class OrderLog(Base):
    __tablename__ = 'order_log'

    id: Mapped[UUID] = mapped_column(primary_key=True)
    order_id: Mapped[UUID] = mapped_column(ForeignKey(Order.id, ondelete='CASCADE'), index=True)
    previous_status: Mapped[str | None] = mapped_column(nullable=True)
    new_status: Mapped[str] = mapped_column()
    note: Mapped[str | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column()
