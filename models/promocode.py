import enum
from datetime import datetime

from sqlalchemy import String, DateTime, Integer, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class PromocodeType(str, enum.Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class Promocode(Base):
    __tablename__ = "promocodes"
    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="promocode_usage_count_positive"),
        CheckConstraint("usage_count <= usage_limit", name="promocode_usage_count_within_limit"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    type: Mapped[str] = mapped_column(String(20))
    # Percent for percent codes, minor units of the base currency for fixed codes
    discount_value: Mapped[int] = mapped_column(Integer)
    usage_limit: Mapped[int] = mapped_column(Integer)
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    valid_from: Mapped[datetime] = mapped_column(DateTime)
    valid_to: Mapped[datetime] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
