from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models.promocode import PromocodeType


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Validity bounds are stored as naive UTC; aware input is converted, not truncated."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class PromocodeCreate(BaseModel):
    code: str = Field(min_length=3, max_length=50)
    type: PromocodeType
    # Percent for percent codes, display units of the base currency for fixed codes
    discount_value: Decimal = Field(gt=0)
    usage_limit: int = Field(gt=0)
    valid_from: datetime
    valid_to: datetime

    @field_validator("valid_from", "valid_to")
    @classmethod
    def normalize_window(cls, value):
        return to_naive_utc(value)

    @model_validator(mode="after")
    def check_values(self):
        if self.type == PromocodeType.PERCENT and self.discount_value >= 100:
            raise ValueError("Discount value must be less than 100% for percent promocodes")
        if self.type == PromocodeType.PERCENT and self.discount_value != self.discount_value.to_integral_value():
            raise ValueError("Percent discount must be a whole number")
        if self.valid_to <= self.valid_from:
            raise ValueError("validTo must be after validFrom")
        return self


class PromocodeUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=3, max_length=50)
    type: Optional[PromocodeType] = None
    discount_value: Optional[Decimal] = Field(default=None, gt=0)
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None

    @field_validator("valid_from", "valid_to")
    @classmethod
    def normalize_window(cls, value):
        return to_naive_utc(value)


class PromocodeOut(BaseModel):
    id: int
    code: str
    type: str
    discount_value: int
    usage_limit: int
    usage_count: int
    valid_from: datetime
    valid_to: datetime

    class Config:
        from_attributes = True


class PromocodePage(BaseModel):
    page_count: int
    promocodes: List[PromocodeOut]
