from typing import Annotated
from fastapi import APIRouter, Depends, Request

from api.v1.schemas import Envelope
from services.webhook import WebhookIngest, get_webhook_ingest


router = APIRouter()


@router.post(
    path='/payment',
    description=
    'Уведомления от Wompi и MercadoPago<br>'
    '401 при неверной подписи, 503 если шлюзу стоит повторить доставку'
)
async def payment_webhook(
    request: Request,
    ingest: Annotated[WebhookIngest, Depends(get_webhook_ingest)]
) -> Envelope[None]:
    result = await ingest.handle(
        body=await request.body(),
        headers=request.headers,
        query=request.query_params
    )
    return Envelope(message=result.action)
