from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from core.config import settings
from core.deps import get_current_user, get_order_service, require_admin
from models.order import Order, OrderStatus
from models.promocode import PromocodeType
from models.user import User
from schemas.order import OrderCreate, OrderCreated, OrderOut, OrderPage
from services.money import transform_price
from services.orders import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"])


def _promocode_out(order: Order) -> Optional[Dict[str, Any]]:
    promocode = order.promocode
    if not promocode:
        return None
    discount_value: float = promocode.discount_value
    if promocode.type == PromocodeType.FIXED.value:
        # Fixed discounts are stored in the base currency
        discount_value = transform_price(promocode.discount_value, settings.BASE_CURRENCY, "read")
    return {"code": promocode.code, "type": promocode.type, "discount_value": discount_value}


def order_summary(order: Order) -> Dict[str, Any]:
    return {
        "number": order.number,
        "status": order.status,
        "currency": order.currency,
        "total": transform_price(order.total, order.currency, "read"),
        "created_at": order.created_at,
        "promocode": _promocode_out(order),
    }


def order_detail(order: Order, payment_timeout_minutes: int) -> Dict[str, Any]:
    return {
        **order_summary(order),
        "name": order.name,
        "email": order.email,
        "phone_number": order.phone_number,
        "items": [
            {
                "id": item.id,
                "product_sku_id": item.product_sku_id,
                "quantity": item.quantity,
                "unit_price": transform_price(item.unit_price, order.currency, "read"),
                "total": transform_price(item.total, order.currency, "read"),
            }
            for item in order.items
        ],
        "payment_timeout_minutes": payment_timeout_minutes,
    }


@router.get("/", response_model=OrderPage)
def list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
):
    rows, page_count = orders.get_all_by_user(user.id, status.value if status else None, page, limit)
    return {"page_count": page_count, "orders": [order_summary(o) for o in rows]}


@router.get("/{order_number}", response_model=OrderOut)
def get_order(order_number: str, user: User = Depends(get_current_user), orders: OrderService = Depends(get_order_service)):
    order = orders.get_one_by_user(user.id, order_number)
    return order_detail(order, orders.payment_ttl_minutes)


@router.post("/", response_model=OrderCreated, status_code=201)
def create_order(data: OrderCreate, user: User = Depends(get_current_user), orders: OrderService = Depends(get_order_service)):
    order = orders.create_order(user.id, data)
    return {"number": order.number}


@admin_router.get("/", response_model=OrderPage)
def list_all_orders(
    search: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    admin: User = Depends(require_admin),
    orders: OrderService = Depends(get_order_service),
):
    rows, page_count = orders.get_all(search, status.value if status else None, page, limit)
    return {"page_count": page_count, "orders": [order_summary(o) for o in rows]}
