from datetime import datetime
from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional


class Address(BaseModel):
    city: str = Field(min_length=1, max_length=100)
    street: str = Field(min_length=1, max_length=200)
    home: str = Field(min_length=1, max_length=50)
    apartment: str = Field(default="", max_length=50)


class OrderCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    phone_number: str = Field(min_length=5, max_length=50)
    currency: str = Field(default="RUB", min_length=3, max_length=3)
    billing_address: Address
    delivery_address: Address


class OrderItemOut(BaseModel):
    id: int
    product_sku_id: int
    quantity: int
    unit_price: float
    total: float


class OrderPromocodeOut(BaseModel):
    code: str
    type: str
    discount_value: float


class OrderSummaryOut(BaseModel):
    number: str
    status: str
    currency: str
    total: float
    created_at: datetime
    promocode: Optional[OrderPromocodeOut] = None


class OrderOut(OrderSummaryOut):
    name: str
    email: EmailStr
    phone_number: str
    items: List[OrderItemOut]
    payment_timeout_minutes: int


class OrderPage(BaseModel):
    page_count: int
    orders: List[OrderSummaryOut]


class OrderCreated(BaseModel):
    number: str
