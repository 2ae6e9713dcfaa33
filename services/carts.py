from typing import Any, Dict

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from core.config import settings
from core.errors import BadRequest, LimitExceeded, NotFound, PromocodeInvalid
from core.logging import get_logger
from models.cart import Cart, CartItem
from models.order import Order, OrderStatus
from models.product import ProductSku
from models.promocode import Promocode, PromocodeType
from services.money import CURRENCY_MULTIPLIER, PriceService, transform_price
from services.promocodes import apply_discount, is_valid

logger = get_logger(__name__)


class CartService:
    """Owns the single cart of each user and its line items."""

    def __init__(self, db: Session, prices: PriceService, max_items: int = settings.MAX_CART_ITEM_COUNT):
        self.db = db
        self.prices = prices
        self.max_items = max_items

    def create_if_not_exists(self, user_id: int) -> Cart:
        """Create the user's cart unless one exists. Does not commit."""
        cart = self.db.execute(select(Cart).where(Cart.user_id == user_id)).scalar_one_or_none()
        if cart:
            return cart
        cart = Cart(user_id=user_id)
        self.db.add(cart)
        self.db.flush()
        return cart

    def get_user_cart(self, user_id: int, log_msg: str = "Get cart failed: cart not found", for_update: bool = False) -> Cart:
        stmt = select(Cart).where(Cart.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        cart = self.db.execute(stmt).scalar_one_or_none()
        if not cart:
            logger.info(log_msg, user_id=user_id)
            raise NotFound("Cart not found")
        return cart

    def count_items(self, cart: Cart) -> int:
        return self.db.execute(select(func.count(CartItem.id)).where(CartItem.cart_id == cart.id)).scalar_one()

    def load_items(self, cart: Cart) -> list[CartItem]:
        return list(
            self.db.execute(
                select(CartItem)
                .options(joinedload(CartItem.product_sku).joinedload(ProductSku.product))
                .where(CartItem.cart_id == cart.id)
                .order_by(CartItem.created_at.desc(), CartItem.id.desc())
            )
            .unique()
            .scalars()
            .all()
        )

    def get_cart(self, user_id: int, currency_to: str | None = None) -> Dict[str, Any]:
        """Build the cart view: priced items, the promocode while valid, and the discounted total."""
        cart = self.get_user_cart(user_id)
        base = self.prices.base_currency
        currency = currency_to or base
        if currency not in CURRENCY_MULTIPLIER or currency not in settings.SUPPORTED_CURRENCIES:
            logger.info("Get cart failed: unsupported currency", currency=currency)
            raise BadRequest("Unsupported currency")
        self.prices.ensure_rates(base, currency)

        items = self.load_items(cart)
        promocode: Promocode | None = cart.promocode
        if promocode is not None:
            validity = is_valid(promocode)
            if not validity.valid:
                # An expired or exhausted code would only block checkout
                logger.info(f"Cart promocode removed: {validity.reason}", user_id=user_id, promocode_id=promocode.id)
                cart.promocode_id = None
                self.db.commit()
                promocode = None
        has_promocode = promocode is not None

        total = 0
        cart_items = []
        for item in items:
            sku = item.product_sku
            price = self.prices.convert_currency(sku.price, base, currency)
            sale_price = (
                self.prices.convert_currency(sku.sale_price, base, currency) if sku.sale_price is not None else None
            )
            total += (sale_price if sale_price is not None else price) * min(item.quantity, sku.quantity)
            cart_items.append(
                {
                    "id": item.id,
                    "product_sku_id": sku.id,
                    "sku": sku.sku,
                    "quantity": item.quantity,
                    "product_sku_quantity": sku.quantity,
                    "price": transform_price(price, currency, "read"),
                    "sale_price": transform_price(sale_price, currency, "read") if sale_price is not None else None,
                    "product": {"name": sku.product.name, "short_description": sku.product.short_description},
                }
            )

        promocode_out = None
        if has_promocode:
            discount_value = promocode.discount_value
            if promocode.type == PromocodeType.FIXED.value:
                discount_value = self.prices.convert_currency(promocode.discount_value, base, currency)
            total = apply_discount(total, promocode, discount_value)
            promocode_out = {
                "code": promocode.code,
                "type": promocode.type,
                "discount_value": (
                    transform_price(discount_value, currency, "read")
                    if promocode.type == PromocodeType.FIXED.value
                    else discount_value
                ),
                "valid_to": promocode.valid_to,
            }

        return {
            "total_price": transform_price(total, currency, "read"),
            "currency": currency,
            "promocode": promocode_out,
            "cart_items": cart_items,
        }

    def add_item(self, user_id: int, product_sku_id: int, quantity: int) -> CartItem:
        cart = self.get_user_cart(user_id, "Add cart item failed: cart not found")

        if not self.db.get(ProductSku, product_sku_id):
            logger.info("Add cart item failed: product sku not found", product_sku_id=product_sku_id)
            raise NotFound("Product sku not found")

        item = self.db.execute(
            select(CartItem).where(CartItem.cart_id == cart.id, CartItem.product_sku_id == product_sku_id)
        ).scalar_one_or_none()
        if item:
            item.quantity = quantity
            self.db.commit()
            return item

        if self.count_items(cart) >= self.max_items:
            logger.info("Add cart item failed: cart item limit exceeded", user_id=user_id)
            raise LimitExceeded("Cart item limit exceeded")

        item = CartItem(cart_id=cart.id, product_sku_id=product_sku_id, quantity=quantity)
        self.db.add(item)
        try:
            self.db.commit()
        except IntegrityError:
            # Same SKU added concurrently: fall back to updating the existing row
            self.db.rollback()
            self.db.execute(
                update(CartItem)
                .where(CartItem.cart_id == cart.id, CartItem.product_sku_id == product_sku_id)
                .values(quantity=quantity)
            )
            self.db.commit()
            item = self.db.execute(
                select(CartItem).where(CartItem.cart_id == cart.id, CartItem.product_sku_id == product_sku_id)
            ).scalar_one()
        return item

    def update_item(self, user_id: int, cart_item_id: int, quantity: int) -> None:
        cart = self.get_user_cart(user_id, "Update cart item failed: cart not found")
        result = self.db.execute(
            update(CartItem)
            .where(CartItem.cart_id == cart.id, CartItem.id == cart_item_id)
            .values(quantity=quantity)
        )
        if result.rowcount == 0:
            self.db.rollback()
            logger.info("Update cart item failed: cart item not found", cart_item_id=cart_item_id)
            raise NotFound("Cart item not found")
        self.db.commit()

    def remove_item(self, user_id: int, cart_item_id: int) -> None:
        cart = self.get_user_cart(user_id, "Delete cart item failed: cart not found")
        result = self.db.execute(
            delete(CartItem).where(CartItem.cart_id == cart.id, CartItem.id == cart_item_id)
        )
        if result.rowcount == 0:
            self.db.rollback()
            logger.info("Delete cart item failed: cart item not found", cart_item_id=cart_item_id)
            raise NotFound("Cart item not found")
        self.db.commit()

    def has_redeemed(self, user_id: int, promocode_id: int) -> bool:
        """Whether a non-cancelled order of this user already consumed the code."""
        order_id = self.db.execute(
            select(Order.id)
            .where(
                Order.user_id == user_id,
                Order.promocode_id == promocode_id,
                Order.status != OrderStatus.CANCELLED.value,
            )
            .limit(1)
        ).scalar_one_or_none()
        return order_id is not None

    def apply_promocode(self, user_id: int, code: str) -> Promocode:
        cart = self.get_user_cart(user_id, "Add cart promocode failed: cart not found")

        promocode = self.db.execute(select(Promocode).where(Promocode.code == code)).scalar_one_or_none()
        if not promocode:
            logger.info("Add cart promocode failed: promocode not found", code=code)
            raise NotFound("Promocode not found")

        validity = is_valid(promocode)
        if not validity.valid:
            logger.info(f"Add cart promocode failed: {validity.reason}", promocode_id=promocode.id)
            raise PromocodeInvalid("Promocode is not valid")

        if self.has_redeemed(user_id, promocode.id):
            logger.info(
                "Add cart promocode failed: promocode already used in a previous order",
                promocode_id=promocode.id,
                user_id=user_id,
            )
            raise PromocodeInvalid("This promocode has already been used in a previous order")

        cart.promocode_id = promocode.id
        self.db.commit()
        return promocode

    def remove_promocode(self, user_id: int) -> None:
        cart = self.get_user_cart(user_id, "Delete cart promocode failed: cart not found")
        if not cart.promocode_id:
            logger.info("Delete cart promocode failed: cart doesn't have a promocode", user_id=user_id)
            raise BadRequest("Cart doesn't have a promocode")
        cart.promocode_id = None
        self.db.commit()

    def empty(self, cart: Cart) -> None:
        """Delete every line item and detach the promocode. Does not commit."""
        self.db.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
        cart.promocode_id = None
        self.db.flush()

    def clear(self, user_id: int) -> None:
        cart = self.get_user_cart(user_id, "Clear cart failed: cart not found")
        self.db.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
        self.db.commit()
