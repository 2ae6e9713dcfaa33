from datetime import datetime, timedelta
from typing import List

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from core.config import settings
from core.db import atomic
from core.errors import BadRequest, LimitExceeded, NotFound, OutOfStock, PromocodeInvalid
from core.logging import get_logger
from models.order import Order, OrderStatus
from models.order_item import OrderItem
from models.product import ProductSku
from models.promocode import Promocode, PromocodeType
from schemas.order import OrderCreate
from services.carts import CartService
from services.money import CURRENCY_MULTIPLIER, PriceService
from services.promocodes import EXHAUSTED, apply_discount, is_valid

logger = get_logger(__name__)


class OrderService:
    def __init__(
        self,
        db: Session,
        carts: CartService,
        prices: PriceService,
        payment_ttl_minutes: int = settings.ORDER_PAYMENT_TTL_MINUTES,
        max_pending_orders: int = settings.MAX_PENDING_ORDERS_PER_USER,
    ):
        self.db = db
        self.carts = carts
        self.prices = prices
        self.payment_ttl = timedelta(minutes=payment_ttl_minutes)
        self.max_pending_orders = max_pending_orders

    @property
    def payment_ttl_minutes(self) -> int:
        return int(self.payment_ttl.total_seconds() // 60)

    def is_order_expired(self, created_at: datetime, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        return created_at + self.payment_ttl <= now

    def count_pending(self, user_id: int) -> int:
        return self.db.execute(
            select(func.count(Order.id)).where(Order.user_id == user_id, Order.status == OrderStatus.PENDING.value)
        ).scalar_one()

    def create_order(self, user_id: int, data: OrderCreate) -> Order:
        """Turn the user's cart into a pending order in one transaction.

        Stock decrements, the promocode usage increment, the order rows and the
        cart clean-up are committed together or not at all.
        """
        currency = data.currency.upper()
        if currency not in CURRENCY_MULTIPLIER or currency not in settings.SUPPORTED_CURRENCIES:
            logger.info("Create order failed: unsupported currency", currency=currency)
            raise BadRequest("Unsupported currency")

        if self.count_pending(user_id) >= self.max_pending_orders:
            logger.info("Create order failed: max pending orders limit reached", user_id=user_id)
            raise LimitExceeded(
                f"You have reached the maximum number of pending orders ({self.max_pending_orders}). "
                "Please complete or cancel existing orders before creating new ones."
            )

        base = self.prices.base_currency
        self.prices.ensure_rates(base, currency)
        now = datetime.utcnow()

        with atomic(self.db):
            cart = self.carts.get_user_cart(user_id, "Create order failed: cart not found", for_update=True)
            items = sorted(self.carts.load_items(cart), key=lambda i: i.product_sku_id)
            if not items:
                logger.info("Create order failed: cart is empty", user_id=user_id)
                raise NotFound("Cart is empty")

            try:
                for item in items:
                    result = self.db.execute(
                        update(ProductSku)
                        .where(ProductSku.id == item.product_sku_id, ProductSku.quantity >= item.quantity)
                        .values(quantity=ProductSku.quantity - item.quantity)
                    )
                    if result.rowcount == 0:
                        logger.info(
                            "Create order failed: not enough stock available",
                            user_id=user_id,
                            sku_id=item.product_sku_id,
                        )
                        raise OutOfStock(item.product_sku_id)
            except IntegrityError as e:
                if "product_sku_quantity_positive" in str(e.orig):
                    logger.info("Create order failed: not enough stock available", user_id=user_id)
                    raise OutOfStock(item.product_sku_id) from e
                raise

            promocode = None
            if cart.promocode_id:
                promocode = self.db.execute(
                    select(Promocode)
                    .where(Promocode.id == cart.promocode_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one()
                validity = is_valid(promocode, now)
                if not validity.valid:
                    logger.info(
                        f"Create order failed: {validity.reason}", user_id=user_id, promocode_id=promocode.id
                    )
                    raise PromocodeInvalid(validity.reason)
                result = self.db.execute(
                    update(Promocode)
                    .where(Promocode.id == promocode.id, Promocode.usage_count < Promocode.usage_limit)
                    .values(usage_count=Promocode.usage_count + 1)
                )
                if result.rowcount == 0:
                    logger.info(f"Create order failed: {EXHAUSTED}", user_id=user_id, promocode_id=promocode.id)
                    raise PromocodeInvalid(EXHAUSTED)

            order_items: List[OrderItem] = []
            subtotal = 0
            for item in items:
                unit_price = self.prices.convert_currency(item.product_sku.effective_price, base, currency)
                line_total = unit_price * item.quantity
                subtotal += line_total
                order_items.append(
                    OrderItem(
                        product_sku_id=item.product_sku_id,
                        quantity=item.quantity,
                        unit_price=unit_price,
                        total=line_total,
                    )
                )

            total = subtotal
            if promocode:
                discount_value = promocode.discount_value
                if promocode.type == PromocodeType.FIXED.value:
                    discount_value = self.prices.convert_currency(promocode.discount_value, base, currency)
                total = apply_discount(subtotal, promocode, discount_value)

            order = Order(
                user_id=user_id,
                promocode_id=promocode.id if promocode else None,
                status=OrderStatus.PENDING.value,
                currency=currency,
                total=total,
                name=data.name,
                email=data.email,
                phone_number=data.phone_number,
                billing_address_city=data.billing_address.city,
                billing_address_street=data.billing_address.street,
                billing_address_home=data.billing_address.home,
                billing_address_apartment=data.billing_address.apartment,
                delivery_address_city=data.delivery_address.city,
                delivery_address_street=data.delivery_address.street,
                delivery_address_home=data.delivery_address.home,
                delivery_address_apartment=data.delivery_address.apartment,
                created_at=now,
                items=order_items,
            )
            self.db.add(order)
            self.db.flush()

            self.carts.empty(cart)

        logger.info("Order created", user_id=user_id, order_id=order.id, order_number=order.number, total=total)
        return order

    def _with_details(self, stmt):
        return stmt.options(
            selectinload(Order.items).selectinload(OrderItem.product_sku).selectinload(ProductSku.product),
            selectinload(Order.promocode),
        )

    def get_one_by_user(self, user_id: int, number: str) -> Order:
        order = self.db.execute(
            self._with_details(select(Order)).where(Order.number == number, Order.user_id == user_id)
        ).scalar_one_or_none()
        if not order:
            logger.info("Get order by user id failed: order not found", user_id=user_id, order_number=number)
            raise NotFound("Order not found")
        return order

    def get_one(self, number: str) -> Order:
        order = self.db.execute(self._with_details(select(Order)).where(Order.number == number)).scalar_one_or_none()
        if not order:
            logger.info("Get order failed: order not found", order_number=number)
            raise NotFound("Order not found")
        return order

    def _paginate(self, stmt, count_stmt, page: int, limit: int) -> tuple[list[Order], int]:
        total = self.db.execute(count_stmt).scalar_one()
        orders = (
            self.db.execute(
                self._with_details(stmt).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(limit * (page - 1))
            )
            .scalars()
            .all()
        )
        return list(orders), (total + limit - 1) // limit

    def get_all_by_user(self, user_id: int, status: str | None = None, page: int = 1, limit: int = 10) -> tuple[list[Order], int]:
        filters = [Order.user_id == user_id]
        if status:
            filters.append(Order.status == status)
        return self._paginate(select(Order).where(*filters), select(func.count(Order.id)).where(*filters), page, limit)

    def get_all(self, search: str | None = None, status: str | None = None, page: int = 1, limit: int = 10) -> tuple[list[Order], int]:
        filters = []
        if search:
            filters.append(
                or_(Order.number == search, Order.email.ilike(f"%{search}%"), Order.name.ilike(f"%{search}%"))
            )
        if status:
            filters.append(Order.status == status)
        return self._paginate(select(Order).where(*filters), select(func.count(Order.id)).where(*filters), page, limit)

    def cancel_expired_orders(self, now: datetime | None = None) -> list[int]:
        """Cancel pending orders past the payment deadline and undo their reservations.

        Status changes, promocode usage decrements and stock restorations of
        one sweep commit together. Only rows still pending are touched, so a
        repeated sweep changes nothing.
        """
        now = now or datetime.utcnow()
        cutoff = now - self.payment_ttl
        cancelled: list[int] = []

        with atomic(self.db):
            expired = (
                self.db.execute(
                    select(Order)
                    .where(Order.status == OrderStatus.PENDING.value, Order.created_at < cutoff)
                    .order_by(Order.id)
                    .with_for_update(skip_locked=True)
                )
                .scalars()
                .all()
            )

            for order in expired:
                result = self.db.execute(
                    update(Order)
                    .where(Order.id == order.id, Order.status == OrderStatus.PENDING.value)
                    .values(status=OrderStatus.CANCELLED.value, updated_at=now)
                )
                if result.rowcount == 0:
                    continue

                if order.promocode_id:
                    self.db.execute(
                        update(Promocode)
                        .where(Promocode.id == order.promocode_id, Promocode.usage_count > 0)
                        .values(usage_count=Promocode.usage_count - 1)
                    )

                rows = self.db.execute(
                    select(OrderItem.product_sku_id, OrderItem.quantity).where(OrderItem.order_id == order.id)
                ).all()
                for product_sku_id, quantity in rows:
                    self.db.execute(
                        update(ProductSku)
                        .where(ProductSku.id == product_sku_id)
                        .values(quantity=ProductSku.quantity + quantity)
                    )
                cancelled.append(order.id)

        if cancelled:
            logger.info("Expired orders cancelled", count=len(cancelled), order_ids=cancelled)
        return cancelled
