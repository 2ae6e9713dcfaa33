from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from core.deps import get_cart_service, get_current_user
from models.promocode import PromocodeType
from models.user import User
from schemas.cart import CartItemAdd, CartItemUpdate, CartOut, CartPromocodeApply, CartPromocodeOut
from services.carts import CartService
from services.money import transform_price

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("/", response_model=CartOut)
def get_cart(
    currency: Optional[str] = Query(default=None, min_length=3, max_length=3),
    user: User = Depends(get_current_user),
    carts: CartService = Depends(get_cart_service),
):
    return carts.get_cart(user.id, currency.upper() if currency else None)


@router.post("/items", status_code=204)
def add_cart_item(data: CartItemAdd, user: User = Depends(get_current_user), carts: CartService = Depends(get_cart_service)):
    carts.add_item(user.id, data.product_sku_id, data.quantity)
    return Response(status_code=204)


@router.patch("/items/{cart_item_id}", status_code=204)
def update_cart_item(
    cart_item_id: int,
    data: CartItemUpdate,
    user: User = Depends(get_current_user),
    carts: CartService = Depends(get_cart_service),
):
    carts.update_item(user.id, cart_item_id, data.quantity)
    return Response(status_code=204)


@router.delete("/items/{cart_item_id}", status_code=204)
def delete_cart_item(cart_item_id: int, user: User = Depends(get_current_user), carts: CartService = Depends(get_cart_service)):
    carts.remove_item(user.id, cart_item_id)
    return Response(status_code=204)


@router.delete("/items", status_code=204)
def clear_cart(user: User = Depends(get_current_user), carts: CartService = Depends(get_cart_service)):
    carts.clear(user.id)
    return Response(status_code=204)


@router.post("/promocode", response_model=CartPromocodeOut)
def apply_promocode(
    data: CartPromocodeApply, user: User = Depends(get_current_user), carts: CartService = Depends(get_cart_service)
):
    promocode = carts.apply_promocode(user.id, data.promocode)
    discount_value = promocode.discount_value
    if promocode.type == PromocodeType.FIXED.value:
        discount_value = transform_price(discount_value, carts.prices.base_currency, "read")
    return {
        "code": promocode.code,
        "type": promocode.type,
        "discount_value": discount_value,
        "valid_to": promocode.valid_to,
    }


@router.delete("/promocode", status_code=204)
def remove_promocode(user: User = Depends(get_current_user), carts: CartService = Depends(get_cart_service)):
    carts.remove_promocode(user.id)
    return Response(status_code=204)
