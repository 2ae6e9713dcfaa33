from datetime import datetime, timedelta

import pytest

from core.errors import BadRequest, InvalidState, NotFound, PaymentGatewayError
from models.order import Order, OrderStatus
from models.payment import Payment, PaymentStatus
from models.product import ProductSku
from schemas.order import OrderCreate


@pytest.fixture()
def pending_order(carts, orders, test_user, make_sku, order_data):
    sku = make_sku(price=10000, quantity=5)
    carts.add_item(test_user.id, sku.id, 2)
    return orders.create_order(test_user.id, OrderCreate(**order_data))


def _reload(db, model, pk):
    db.expire_all()
    return db.get(model, pk)


class TestCreatePayment:
    def test_returns_redirect_url(self, db, payments, gateway, test_user, pending_order):
        url = payments.create_payment(test_user.id, pending_order.number)

        session_id = list(gateway.sessions)[-1]
        assert url.endswith(session_id)
        payment = db.query(Payment).one()
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.amount == pending_order.total
        assert payment.checkout_session_id == session_id

    def test_new_session_supersedes_pending_one(self, db, payments, test_user, pending_order):
        payments.create_payment(test_user.id, pending_order.number)
        payments.create_payment(test_user.id, pending_order.number)
        statuses = sorted(p.status for p in db.query(Payment).all())
        assert statuses == ["cancelled", "pending"]

    def test_order_of_another_user(self, payments, make_user, pending_order):
        with pytest.raises(NotFound):
            payments.create_payment(make_user().id, pending_order.number)

    def test_order_not_pending(self, db, payments, test_user, pending_order):
        pending_order.status = OrderStatus.PAID.value
        db.commit()
        with pytest.raises(BadRequest):
            payments.create_payment(test_user.id, pending_order.number)

    def test_payment_window_elapsed(self, db, payments, test_user, pending_order):
        pending_order.created_at = datetime.utcnow() - timedelta(minutes=31)
        db.commit()
        with pytest.raises(InvalidState):
            payments.create_payment(test_user.id, pending_order.number)

    def test_gateway_failure_records_nothing(self, db, payments, gateway, test_user, pending_order):
        gateway.should_fail = True
        with pytest.raises(PaymentGatewayError):
            payments.create_payment(test_user.id, pending_order.number)
        assert db.query(Payment).count() == 0


class TestCapturePayment:
    def _start(self, payments, gateway, user, order) -> str:
        payments.create_payment(user.id, order.number)
        return list(gateway.sessions)[-1]

    def test_capture_marks_order_paid(self, db, payments, gateway, test_user, pending_order):
        session_id = self._start(payments, gateway, test_user, pending_order)
        gateway.mark_paid(session_id)

        payment = payments.capture_payment(test_user.id, session_id)

        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.transaction_id.startswith("pi_test_")
        assert _reload(db, Order, pending_order.id).status == OrderStatus.PAID.value

    def test_capture_is_idempotent(self, db, payments, gateway, test_user, pending_order):
        session_id = self._start(payments, gateway, test_user, pending_order)
        gateway.mark_paid(session_id)

        first = payments.capture_payment(test_user.id, session_id)
        second = payments.capture_payment(test_user.id, session_id)

        assert first.id == second.id
        assert second.status == PaymentStatus.COMPLETED.value
        assert _reload(db, Order, pending_order.id).status == OrderStatus.PAID.value

    def test_unpaid_session_fails_payment(self, db, payments, gateway, test_user, pending_order):
        session_id = self._start(payments, gateway, test_user, pending_order)

        with pytest.raises(InvalidState):
            payments.capture_payment(test_user.id, session_id)

        payment = db.query(Payment).one()
        db.refresh(payment)
        assert payment.status == PaymentStatus.FAILED.value
        assert _reload(db, Order, pending_order.id).status == OrderStatus.PENDING.value

    def test_expired_session(self, db, payments, gateway, test_user, pending_order):
        session_id = self._start(payments, gateway, test_user, pending_order)
        gateway.mark_expired(session_id)

        with pytest.raises(InvalidState):
            payments.capture_payment(test_user.id, session_id)
        assert _reload(db, Payment, db.query(Payment).one().id).status == PaymentStatus.EXPIRED.value

    def test_capture_after_payment_window(self, db, payments, gateway, test_user, pending_order):
        """A late confirmation is refused even when the gateway says paid."""
        session_id = self._start(payments, gateway, test_user, pending_order)
        gateway.mark_paid(session_id)
        pending_order.created_at = datetime.utcnow() - timedelta(minutes=31)
        db.commit()

        with pytest.raises(InvalidState):
            payments.capture_payment(test_user.id, session_id)
        assert _reload(db, Order, pending_order.id).status == OrderStatus.PENDING.value

    def test_capture_after_sweep_rejected(self, db, orders, payments, gateway, test_user, pending_order):
        """Once swept, the order stays cancelled and its stock stays released."""
        session_id = self._start(payments, gateway, test_user, pending_order)
        gateway.mark_paid(session_id)
        orders.cancel_expired_orders(now=pending_order.created_at + timedelta(minutes=31))

        with pytest.raises(InvalidState):
            payments.capture_payment(test_user.id, session_id)

        assert _reload(db, Order, pending_order.id).status == OrderStatus.CANCELLED.value
        assert _reload(db, ProductSku, pending_order.items[0].product_sku_id).quantity == 5

    def test_unknown_session(self, payments, test_user):
        with pytest.raises(NotFound):
            payments.capture_payment(test_user.id, "cs_missing")

    def test_session_of_another_user(self, payments, gateway, make_user, test_user, pending_order):
        session_id = self._start(payments, gateway, test_user, pending_order)
        with pytest.raises(NotFound):
            payments.capture_payment(make_user().id, session_id)


class TestCancelPayment:
    def test_cancel_keeps_reservation(self, db, payments, gateway, test_user, pending_order):
        """Cancelling the payment leaves the order pending and stock reserved."""
        payments.create_payment(test_user.id, pending_order.number)
        session_id = list(gateway.sessions)[-1]

        payment = payments.cancel_payment(test_user.id, session_id)

        assert payment.status == PaymentStatus.CANCELLED.value
        assert _reload(db, Order, pending_order.id).status == OrderStatus.PENDING.value
        assert _reload(db, ProductSku, pending_order.items[0].product_sku_id).quantity == 3

    def test_cancel_twice(self, payments, gateway, test_user, pending_order):
        payments.create_payment(test_user.id, pending_order.number)
        session_id = list(gateway.sessions)[-1]
        payments.cancel_payment(test_user.id, session_id)
        with pytest.raises(InvalidState):
            payments.cancel_payment(test_user.id, session_id)

    def test_cancel_completed(self, payments, gateway, test_user, pending_order):
        payments.create_payment(test_user.id, pending_order.number)
        session_id = list(gateway.sessions)[-1]
        gateway.mark_paid(session_id)
        payments.capture_payment(test_user.id, session_id)
        with pytest.raises(InvalidState):
            payments.cancel_payment(test_user.id, session_id)
