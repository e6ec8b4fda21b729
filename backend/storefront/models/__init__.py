from .catalog import Product, Variant
from .customers import Customer, Conversation, Message
from .orders import Order, OrderItem, Payment
from .settings import StoreSetting

__all__ = [
    'Product', 'Variant',
    'Customer', 'Conversation', 'Message',
    'Order', 'OrderItem', 'Payment',
    'StoreSetting',
]
