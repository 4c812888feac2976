from typing import Annotated
from decimal import Decimal
from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from api.v1.schemas import Envelope
from services.coupon import CouponValidation, CouponValidator, get_coupon_validator


router = APIRouter()


class ValidateBody(BaseModel):
    code: str = Field(min_length=1)
    subtotal: Decimal


@router.post(path='/validate', description='Проверка купона для показа скидки до оплаты, ничего не меняет')
async def validate_coupon(
    body: Annotated[ValidateBody, Body()],
    validator: Annotated[CouponValidator, Depends(get_coupon_validator)]
) -> Envelope[CouponValidation]:
    return Envelope(data=await validator.validate(body.code, body.subtotal))
