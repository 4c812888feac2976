from typing import Annotated
from fastapi import APIRouter, Body, Depends, Path, status

from api.v1.schemas import Envelope, OrderOut, PaymentConfirmation, PaymentOut
from services.payment import CheckoutIn, PaymentService, get_payment_service
from services.webhook import WebhookIngest, get_webhook_ingest


router = APIRouter()


@router.post(
    path='',
    status_code=status.HTTP_201_CREATED,
    description=
    'Регистрирует попытку оплаты, начатую на чекауте<br>'
    'Позиции корзины фиксируются и позже становятся позициями заказа'
)
async def register_payment(
    body: Annotated[CheckoutIn, Body()],
    payments: Annotated[PaymentService, Depends(get_payment_service)]
) -> Envelope[PaymentOut]:
    return Envelope(data=PaymentOut.of(await payments.register(body)))


@router.get(path='/{transaction_id}')
async def get_payment(
    transaction_id: Annotated[str, Path()],
    payments: Annotated[PaymentService, Depends(get_payment_service)]
) -> Envelope[PaymentOut]:
    return Envelope(data=PaymentOut.of(await payments.get(transaction_id)))


@router.post(
    path='/{transaction_id}/confirm',
    description=
    'Клиент сообщает о завершении оплаты<br>'
    'Статус запрашивается у шлюза, при одобрении создается (или возвращается) заказ'
)
async def confirm_payment(
    transaction_id: Annotated[str, Path()],
    payments: Annotated[PaymentService, Depends(get_payment_service)],
    ingest: Annotated[WebhookIngest, Depends(get_webhook_ingest)]
) -> Envelope[PaymentConfirmation]:
    payment = await payments.get(transaction_id)
    result = await ingest.refresh(payment.external_id, payment.gateway)

    return Envelope(data=PaymentConfirmation(
        payment=PaymentOut.of(result.payment or payment),
        order=OrderOut.model_validate(result.order) if result.order else None,
        action=result.action
    ))
