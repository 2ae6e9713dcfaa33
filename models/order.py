import enum
import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    number: Mapped[str] = mapped_column(String(36), unique=True, index=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    promocode_id: Mapped[int | None] = mapped_column(
        ForeignKey("promocodes.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(String(30), default=OrderStatus.PENDING.value, index=True)
    currency: Mapped[str] = mapped_column(String(3))
    # Minor units of the order currency, after discount
    total: Mapped[int] = mapped_column(Integer)

    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[str] = mapped_column(String(255))
    phone_number: Mapped[str] = mapped_column(String(50))
    billing_address_city: Mapped[str] = mapped_column(String(100))
    billing_address_street: Mapped[str] = mapped_column(String(200))
    billing_address_home: Mapped[str] = mapped_column(String(50))
    billing_address_apartment: Mapped[str] = mapped_column(String(50))
    delivery_address_city: Mapped[str] = mapped_column(String(100))
    delivery_address_street: Mapped[str] = mapped_column(String(200))
    delivery_address_home: Mapped[str] = mapped_column(String(50))
    delivery_address_apartment: Mapped[str] = mapped_column(String(50))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("OrderItem", cascade="all, delete-orphan", back_populates="order", order_by="OrderItem.id")
    promocode = relationship("Promocode")
    payments = relationship("Payment", back_populates="order", cascade="all, delete-orphan")
