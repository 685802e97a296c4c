from .auth import User
from .catalog import Product, ProductVariant
from .carts import Cart, CartItem
from .checkout import CheckoutSession
from .orders import Order, OrderItem
from .payments import PaymentMethod, Payment, PaymentConfirmation
from .guests import Guest

__all__ = [
    'User',
    'Product', 'ProductVariant',
    'Cart', 'CartItem',
    'CheckoutSession',
    'Order', 'OrderItem',
    'PaymentMethod', 'Payment', 'PaymentConfirmation',
    'Guest',
]
