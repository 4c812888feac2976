from fastapi import Request

from .base import PaymentEvent, PaymentGateway, GatewayError
from .wompi import WompiGateway
from .mercadopago import MercadoPagoGateway


def get_gateways(request: Request) -> dict[str, PaymentGateway]:
    return request.app.state.gateways
