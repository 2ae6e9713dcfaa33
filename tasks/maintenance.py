from celery import current_app
from sqlalchemy.exc import SQLAlchemyError

from core.db import SessionLocal
from core.deps import price_service
from core.logging import get_logger
from services.carts import CartService
from services.orders import OrderService
from services.users import delete_not_verified_users

logger = get_logger(__name__)


@current_app.task(name="tasks.maintenance.sweep_expired_orders")
def sweep_expired_orders():
    """Cancel unpaid orders past their payment deadline and return their stock and promocode usage.

    A failed sweep is logged and leaves the orders eligible for the next run.
    """
    db = SessionLocal()
    try:
        orders = OrderService(db, CartService(db, price_service), price_service)
        cancelled = orders.cancel_expired_orders()
        return {"status": "ok", "cancelled": len(cancelled)}
    except SQLAlchemyError as exc:
        logger.error("Expired orders sweep failed", error=str(exc), exc_info=True)
        return {"status": "failed", "error": str(exc)}
    finally:
        db.close()


@current_app.task(name="tasks.maintenance.purge_unverified_users")
def purge_unverified_users():
    db = SessionLocal()
    try:
        deleted = delete_not_verified_users(db)
        return {"status": "ok", "deleted": deleted}
    except SQLAlchemyError as exc:
        logger.error("Delete not verified users task failed", error=str(exc), exc_info=True)
        return {"status": "failed", "error": str(exc)}
    finally:
        db.close()


@current_app.task(name="tasks.maintenance.refresh_exchange_rates")
def refresh_exchange_rates():
    rates = price_service.get_exchange_rates(force_refresh=True)
    if not rates:
        logger.error("Get exchange rates task failed: no rates available")
        return {"status": "failed"}
    return {"status": "ok", "currencies": len(rates)}
