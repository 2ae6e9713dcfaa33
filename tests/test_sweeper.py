from datetime import timedelta

from models.order import Order, OrderStatus
from models.product import ProductSku
from models.promocode import Promocode
from schemas.order import OrderCreate


def _reload(db, model, pk):
    db.expire_all()
    return db.get(model, pk)


class TestCancelExpiredOrders:
    def test_restores_stock_after_payment_window(self, db, carts, orders, test_user, make_sku, order_data):
        """5 in stock, 3 reserved, 5 again once the unpaid order is swept."""
        sku = make_sku(quantity=5)
        carts.add_item(test_user.id, sku.id, 3)
        order = orders.create_order(test_user.id, OrderCreate(**order_data))
        assert _reload(db, ProductSku, sku.id).quantity == 2

        cancelled = orders.cancel_expired_orders(now=order.created_at + timedelta(minutes=31))

        assert cancelled == [order.id]
        assert _reload(db, Order, order.id).status == OrderStatus.CANCELLED.value
        assert _reload(db, ProductSku, sku.id).quantity == 5

    def test_returns_promocode_use(self, db, carts, orders, test_user, make_sku, make_promocode, order_data):
        promocode = make_promocode(usage_limit=1)
        carts.add_item(test_user.id, make_sku().id, 1)
        carts.apply_promocode(test_user.id, promocode.code)
        order = orders.create_order(test_user.id, OrderCreate(**order_data))
        assert _reload(db, Promocode, promocode.id).usage_count == 1

        orders.cancel_expired_orders(now=order.created_at + timedelta(minutes=31))

        assert _reload(db, Promocode, promocode.id).usage_count == 0

    def test_second_sweep_changes_nothing(self, db, carts, orders, test_user, make_sku, make_promocode, order_data):
        sku = make_sku(quantity=5)
        promocode = make_promocode()
        carts.add_item(test_user.id, sku.id, 2)
        carts.apply_promocode(test_user.id, promocode.code)
        order = orders.create_order(test_user.id, OrderCreate(**order_data))
        later = order.created_at + timedelta(minutes=31)

        orders.cancel_expired_orders(now=later)
        assert orders.cancel_expired_orders(now=later) == []

        assert _reload(db, ProductSku, sku.id).quantity == 5
        assert _reload(db, Promocode, promocode.id).usage_count == 0

    def test_orders_inside_window_untouched(self, db, carts, orders, test_user, make_sku, order_data):
        sku = make_sku(quantity=5)
        carts.add_item(test_user.id, sku.id, 1)
        order = orders.create_order(test_user.id, OrderCreate(**order_data))

        assert orders.cancel_expired_orders(now=order.created_at + timedelta(minutes=29)) == []
        assert _reload(db, Order, order.id).status == OrderStatus.PENDING.value
        assert _reload(db, ProductSku, sku.id).quantity == 4

    def test_paid_orders_untouched(self, db, orders, test_user, make_order):
        order = make_order(test_user, status=OrderStatus.PAID.value)
        assert orders.cancel_expired_orders(now=order.created_at + timedelta(days=1)) == []
        assert _reload(db, Order, order.id).status == OrderStatus.PAID.value

    def test_usage_count_never_negative(self, db, orders, test_user, make_promocode, make_order):
        promocode = make_promocode(usage_count=0)
        order = make_order(test_user, promocode=promocode)

        orders.cancel_expired_orders(now=order.created_at + timedelta(hours=1))

        assert _reload(db, Order, order.id).status == OrderStatus.CANCELLED.value
        assert _reload(db, Promocode, promocode.id).usage_count == 0

    def test_sweeps_every_expired_order(self, orders, test_user, make_user, make_order):
        first = make_order(test_user)
        second = make_order(make_user())
        cancelled = orders.cancel_expired_orders(now=second.created_at + timedelta(hours=1))
        assert sorted(cancelled) == sorted([first.id, second.id])
