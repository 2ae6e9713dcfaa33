from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), index=True)
    short_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    skus = relationship("ProductSku", back_populates="product", cascade="all, delete-orphan")


class ProductSku(Base):
    """A purchasable variant. Prices are integer minor units of the base currency."""

    __tablename__ = "product_skus"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="product_sku_quantity_positive"),
        CheckConstraint("sale_price IS NULL OR sale_price < price", name="product_sku_sale_price_below_price"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    sku: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    price: Mapped[int] = mapped_column(Integer)
    sale_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product", back_populates="skus")

    @property
    def effective_price(self) -> int:
        return self.sale_price if self.sale_price is not None else self.price
