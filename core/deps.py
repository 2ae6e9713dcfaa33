"""Request dependencies: the identity context and service construction.

Services get their collaborators through their constructors here; nothing
looks them up at runtime.
"""

from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from core.db import get_db
from core.redis import redis_client
from models.user import User
from security import jwt as jwt_utils
from services.carts import CartService
from services.gateway import PaymentGateway, build_gateway
from services.money import PriceService
from services.orders import OrderService
from services.payments import PaymentService
from services.promocodes import PromocodeService

# Process-wide: the rate table and gateway client outlive a request
price_service = PriceService(redis_client)
payment_gateway = build_gateway()


def get_current_user(
    db: Session = Depends(get_db), authorization: Optional[str] = Header(default=None, alias="Authorization")
) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt_utils.decode_access(token)
        user_id = int(payload.get("sub"))
    except (jwt.PyJWTError, TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def get_price_service() -> PriceService:
    return price_service


def get_payment_gateway() -> PaymentGateway:
    return payment_gateway


def get_promocode_service(db: Session = Depends(get_db)) -> PromocodeService:
    return PromocodeService(db)


def get_cart_service(db: Session = Depends(get_db), prices: PriceService = Depends(get_price_service)) -> CartService:
    return CartService(db, prices)


def get_order_service(
    db: Session = Depends(get_db),
    carts: CartService = Depends(get_cart_service),
    prices: PriceService = Depends(get_price_service),
) -> OrderService:
    return OrderService(db, carts, prices)


def get_payment_service(
    db: Session = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentService:
    return PaymentService(db, orders, gateway)
