from typing import Annotated
from uuid import UUID
from fastapi import APIRouter, Body, Depends, Path, Query, status
from pydantic import BaseModel, ConfigDict, Field

from api.v1.schemas import Envelope, OrderOut
from services.reconciler import OrderReconciler, get_order_reconciler
from services.order_status import OrderStatusService, get_order_status_service


router = APIRouter()


def payment_ref(value: str) -> UUID | str:
    try:
        return UUID(value)
    except ValueError:
        return value


class FromPaymentBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(alias='paymentId', min_length=1, description='Id платежа или id транзакции шлюза')
    shipping_address_id: int | None = Field(default=None, alias='shippingAddressId')
    coupon_id: UUID | None = Field(default=None, alias='couponId')


class StatusBody(BaseModel):
    status: str
    note: str | None = None


@router.post(
    path='/from-payment',
    status_code=status.HTTP_201_CREATED,
    description=
    'Создает заказ по одобренному платежу<br>'
    'Повторный вызов для того же платежа возвращает тот же заказ'
)
async def create_from_payment(
    body: Annotated[FromPaymentBody, Body()],
    reconciler: Annotated[OrderReconciler, Depends(get_order_reconciler)]
) -> Envelope[OrderOut]:
    order = await reconciler.reconcile_from_payment(
        payment_ref(body.payment_id),
        shipping_address_id=body.shipping_address_id,
        coupon_id=body.coupon_id
    )
    return Envelope(data=OrderOut.model_validate(order))


@router.get(path='', description='Заказы пользователя, новые первыми')
async def list_user_orders(
    user_id: Annotated[UUID, Query()],
    orders: Annotated[OrderStatusService, Depends(get_order_status_service)],
    limit: Annotated[int, Query(ge=1, le=100)] = 50
) -> Envelope[list[OrderOut]]:
    return Envelope(data=[OrderOut.model_validate(order) for order in await orders.list_for_user(user_id, limit)])


@router.get(path='/{order_id}')
async def get_order(
    order_id: Annotated[UUID, Path()],
    orders: Annotated[OrderStatusService, Depends(get_order_status_service)]
) -> Envelope[OrderOut]:
    return Envelope(data=OrderOut.model_validate(await orders.get(order_id)))


@router.patch(
    path='/{order_id}/status',
    description=
    'pending → paid → processing → shipped → delivered, отмена возможна до отправки<br>'
    'Запрос текущего статуса ничего не меняет'
)
async def change_status(
    order_id: Annotated[UUID, Path()],
    body: Annotated[StatusBody, Body()],
    orders: Annotated[OrderStatusService, Depends(get_order_status_service)]
) -> Envelope[OrderOut]:
    order = await orders.change_status(order_id, body.status, note=body.note)
    return Envelope(data=OrderOut.model_validate(order))
