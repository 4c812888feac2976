from .base import Base
from .payment import Payment
from .checkout_item import CheckoutItem
from .coupon import Coupon
from .order import Order, OrderItem
from .order_log import OrderLog
