# Import models so that SQLAlchemy metadata includes them on app startup
from .user import User  # noqa: F401
from .product import Product, ProductSku  # noqa: F401
from .promocode import Promocode, PromocodeType  # noqa: F401
from .cart import Cart, CartItem  # noqa: F401
from .order import Order, OrderStatus  # noqa: F401
from .order_item import OrderItem  # noqa: F401
from .payment import Payment, PaymentStatus  # noqa: F401
