from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class CartItemAdd(BaseModel):
    product_sku_id: int
    quantity: int = Field(gt=0, le=1000)


class CartItemUpdate(BaseModel):
    quantity: int = Field(gt=0, le=1000)


class CartPromocodeApply(BaseModel):
    promocode: str = Field(min_length=1, max_length=50)


class CartProductOut(BaseModel):
    name: str
    short_description: Optional[str] = None


class CartItemOut(BaseModel):
    id: int
    product_sku_id: int
    sku: str
    quantity: int
    product_sku_quantity: int
    price: float
    sale_price: Optional[float] = None
    product: CartProductOut


class CartPromocodeOut(BaseModel):
    code: str
    type: str
    discount_value: float
    valid_to: datetime


class CartOut(BaseModel):
    total_price: float
    currency: str
    promocode: Optional[CartPromocodeOut] = None
    cart_items: List[CartItemOut]
