from typing import Generic, TypeVar
from uuid import UUID
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel, ConfigDict


T = TypeVar('T')


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: str | None = None
    data: T | None = None


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    variant_id: int | None
    name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    previous_status: str | None
    new_status: str
    note: str | None
    created_at: datetime


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    payment_id: UUID
    coupon_id: UUID | None
    shipping_address_id: int | None
    status: str
    subtotal: Decimal
    discount: Decimal
    shipping_cost: Decimal
    taxes: Decimal
    total: Decimal
    currency: str
    created_at: datetime
    paid_at: datetime | None
    shipped_at: datetime | None
    delivered_at: datetime | None
    cancelled_at: datetime | None
    items: list[OrderItemOut] = []
    logs: list[OrderLogOut] = []


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transaction_id: str
    gateway: str
    method: str
    status: str
    status_message: str | None
    amount: Decimal
    currency: str
    user_id: UUID
    shipping_address_id: int | None
    coupon_id: UUID | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def of(cls, payment) -> 'PaymentOut':
        return cls.model_validate({
            **{name: getattr(payment, name) for name in cls.model_fields if name != 'transaction_id'},
            'transaction_id': payment.external_id
        })


class PaymentConfirmation(BaseModel):
    payment: PaymentOut | None
    order: OrderOut | None
    action: str
