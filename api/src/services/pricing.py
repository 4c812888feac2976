from decimal import Decimal
from dataclasses import dataclass
from collections.abc import Sequence

import tables
from settings import settings
from services.coupon import quantize_money


@dataclass(frozen=True)
class Charges:
    shipping_cost: Decimal
    taxes: Decimal


def items_subtotal(items: Sequence[tables.CheckoutItem]) -> Decimal:
    return sum((item.unit_price * item.quantity for item in items), start=Decimal('0'))


@dataclass(frozen=True)
class PricingService:
    free_shipping_threshold: Decimal = settings.free_shipping_threshold
    flat_shipping_cost: Decimal = settings.flat_shipping_cost
    tax_rate: Decimal = settings.tax_rate

    def charges(self, shipping_address_id: int | None, items: Sequence[tables.CheckoutItem]) -> Charges:
        subtotal = items_subtotal(items)

        if shipping_address_id is None or subtotal >= self.free_shipping_threshold:
            shipping_cost = Decimal('0')
        else:
            shipping_cost = self.flat_shipping_cost

        # IVA считается от стоимости товаров без учета купона
        return Charges(
            shipping_cost=shipping_cost,
            taxes=quantize_money(subtotal * self.tax_rate)
        )


def get_pricing_service() -> PricingService:
    return PricingService()
