from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session, joinedload

from core.config import settings
from core.db import atomic
from core.errors import BadRequest, InvalidState, NotFound, PaymentGatewayError
from core.logging import get_logger
from models.order import Order, OrderStatus
from models.payment import Payment, PaymentStatus
from services.gateway import LineItem, PaymentGateway
from services.orders import OrderService

logger = get_logger(__name__)


class PaymentService:
    """Drives payment state and keeps the order status in step with it.

    Never touches stock or promocode usage: reversing a reservation is left to
    the expired order sweep.
    """

    def __init__(
        self,
        db: Session,
        orders: OrderService,
        gateway: PaymentGateway,
        client_url: str = settings.CLIENT_URL,
        client_orders_path: str = settings.CLIENT_ORDERS_PATH,
    ):
        self.db = db
        self.orders = orders
        self.gateway = gateway
        self.client_url = client_url
        self.client_orders_path = client_orders_path

    def create_redirect_urls(self, order_number: str) -> tuple[str, str]:
        base = f"{self.client_url}{self.client_orders_path}/{order_number}"
        return f"{base}?sessionId={{CHECKOUT_SESSION_ID}}", base

    def create_payment(self, user_id: int, order_number: str) -> str:
        order = self.orders.get_one_by_user(user_id, order_number)

        if order.status != OrderStatus.PENDING.value:
            logger.info("Create payment failed: order is not pending", order_number=order.number)
            raise BadRequest("Order is not pending")

        if self.orders.is_order_expired(order.created_at):
            logger.info("Create payment failed: payment expired", order_number=order.number)
            raise InvalidState("Payment expired")

        success_url, cancel_url = self.create_redirect_urls(order.number)
        line_items = [
            LineItem(name=item.product_sku.product.name, unit_amount=item.unit_price, quantity=item.quantity)
            for item in order.items
        ]
        try:
            session = self.gateway.create_checkout_session(
                order_number=order.number,
                currency=order.currency,
                customer_email=order.email,
                line_items=line_items,
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except PaymentGatewayError:
            logger.error("Payment session creation failed", order_number=order.number, exc_info=True)
            raise

        if not session.url:
            logger.warning("Create payment failed: empty redirect url", order_number=order.number)
            raise PaymentGatewayError("Payment service is currently unavailable")

        with atomic(self.db):
            # Supersede any session the user abandoned for this order
            self.db.execute(
                update(Payment)
                .where(Payment.order_id == order.id, Payment.status == PaymentStatus.PENDING.value)
                .values(status=PaymentStatus.CANCELLED.value)
            )
            self.db.add(
                Payment(
                    order_id=order.id,
                    checkout_session_id=session.id,
                    amount=order.total,
                    currency=order.currency,
                    status=PaymentStatus.PENDING.value,
                    raw_response=session.raw,
                )
            )

        logger.info("Payment created", order_id=order.id, session_id=session.id)
        return session.url

    def get_user_payment(self, user_id: int, session_id: str, log_msg: str) -> Payment:
        payment = self.db.execute(
            select(Payment)
            .join(Order, Order.id == Payment.order_id)
            .options(joinedload(Payment.order))
            .where(Payment.checkout_session_id == session_id, Order.user_id == user_id)
        ).scalar_one_or_none()
        if not payment:
            logger.info(log_msg, user_id=user_id, session_id=session_id)
            raise NotFound("Payment doesn't exist")
        return payment

    def _set_status(self, payment: Payment, status: PaymentStatus) -> None:
        self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
            .values(status=status.value)
        )
        self.db.commit()

    def capture_payment(self, user_id: int, session_id: str) -> Payment:
        payment = self.get_user_payment(user_id, session_id, "Capture payment failed: payment doesn't exist")
        order = payment.order

        if payment.status == PaymentStatus.COMPLETED.value:
            logger.info("Capture payment skipped: payment already completed", payment_id=payment.id)
            return payment

        if order.status != OrderStatus.PENDING.value:
            logger.info("Capture payment failed: order is not pending", order_id=order.id)
            raise InvalidState("Order is not pending")

        if payment.status != PaymentStatus.PENDING.value:
            logger.info("Capture payment failed: payment is not pending", order_id=order.id, payment_id=payment.id)
            raise InvalidState("Payment is not pending")

        if self.orders.is_order_expired(order.created_at):
            self._set_status(payment, PaymentStatus.EXPIRED)
            logger.info("Capture payment failed: payment expired", order_id=order.id, payment_id=payment.id)
            raise InvalidState("Payment expired")

        session = self.gateway.retrieve_checkout_session(session_id)
        if not session.paid:
            self._set_status(payment, PaymentStatus.EXPIRED if session.expired else PaymentStatus.FAILED)
            logger.info("Capture payment failed: payment not paid", order_id=order.id, payment_id=payment.id)
            raise InvalidState("Payment not paid")

        now = datetime.utcnow()
        try:
            with atomic(self.db):
                result = self.db.execute(
                    update(Order)
                    .where(Order.id == order.id, Order.status == OrderStatus.PENDING.value)
                    .values(status=OrderStatus.PAID.value, updated_at=now)
                )
                if result.rowcount == 0:
                    raise InvalidState("Order is not pending")
                result = self.db.execute(
                    update(Payment)
                    .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
                    .values(status=PaymentStatus.COMPLETED.value, transaction_id=session.transaction_id, updated_at=now)
                )
                if result.rowcount == 0:
                    raise InvalidState("Payment is not pending")
        except InvalidState:
            # Lost a race: a duplicate confirmation already completed it, or the order was cancelled
            self.db.refresh(payment)
            if payment.status == PaymentStatus.COMPLETED.value:
                return payment
            logger.info("Capture payment failed: state changed concurrently", order_id=order.id, payment_id=payment.id)
            raise

        self.db.refresh(payment)
        logger.info("Payment captured", order_id=order.id, payment_id=payment.id)
        return payment

    def cancel_payment(self, user_id: int, session_id: str) -> Payment:
        payment = self.get_user_payment(user_id, session_id, "Cancel payment failed: payment doesn't exist")
        order = payment.order

        if order.status != OrderStatus.PENDING.value:
            logger.info("Cancel payment failed: order is not pending", order_id=order.id)
            raise InvalidState("Order is not pending")

        if payment.status != PaymentStatus.PENDING.value:
            logger.info("Cancel payment failed: payment is not pending", order_id=order.id, payment_id=payment.id)
            raise InvalidState("Payment is not pending")

        result = self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
            .values(status=PaymentStatus.CANCELLED.value)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise InvalidState("Payment is not pending")
        self.db.commit()
        self.db.refresh(payment)
        logger.info("Payment cancelled", order_id=order.id, payment_id=payment.id)
        return payment
