from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, NamedTuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import BadRequest, NotFound
from core.logging import get_logger
from models.promocode import Promocode, PromocodeType
from schemas.promocode import PromocodeCreate, PromocodeUpdate
from services.money import round_half_up, transform_price

logger = get_logger(__name__)

NOT_ACTIVE_YET = "Promocode not active yet"
EXPIRED = "Promocode expired"
EXHAUSTED = "Promocode is inactive"


class PromocodeValidity(NamedTuple):
    valid: bool
    reason: str | None = None


def is_valid(promocode: Promocode, now: datetime | None = None) -> PromocodeValidity:
    """Check the validity window ``[valid_from, valid_to)`` and the usage limit."""
    now = now or datetime.utcnow()
    if now < promocode.valid_from:
        return PromocodeValidity(False, NOT_ACTIVE_YET)
    if now >= promocode.valid_to:
        return PromocodeValidity(False, EXPIRED)
    if promocode.usage_count >= promocode.usage_limit:
        return PromocodeValidity(False, EXHAUSTED)
    return PromocodeValidity(True)


def discount_amount(amount: int, promocode_type: str, discount_value: int) -> int:
    if promocode_type == PromocodeType.FIXED.value:
        return discount_value
    return round_half_up(Decimal(amount) * Decimal(discount_value) / 100)


def apply_discount(amount: int, promocode: Promocode, discount_value: int | None = None) -> int:
    """Subtract the promocode discount from ``amount`` (minor units), floored at 0.

    ``discount_value`` overrides the stored value, e.g. a fixed discount already
    converted to another currency.
    """
    value = promocode.discount_value if discount_value is None else discount_value
    return max(amount - discount_amount(amount, promocode.type, value), 0)


@dataclass(frozen=True)
class PromocodePatch:
    """Only the columns that actually change, applied as a single UPDATE."""

    values: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.values)


class PromocodeService:
    def __init__(self, db: Session, base_currency: str = settings.BASE_CURRENCY):
        self.db = db
        self.base_currency = base_currency

    def get(self, promocode_id: int) -> Promocode:
        promocode = self.db.get(Promocode, promocode_id)
        if not promocode:
            logger.info("Promocode doesn't exist", promocode_id=promocode_id)
            raise NotFound("Promocode not found")
        return promocode

    def get_all(self, page: int = 1, limit: int = 20, code: str | None = None) -> tuple[list[Promocode], int]:
        stmt = select(Promocode)
        count_stmt = select(func.count(Promocode.id))
        if code:
            stmt = stmt.where(Promocode.code.ilike(f"%{code}%"))
            count_stmt = count_stmt.where(Promocode.code.ilike(f"%{code}%"))
        total = self.db.execute(count_stmt).scalar_one()
        promocodes = (
            self.db.execute(stmt.order_by(Promocode.created_at.desc(), Promocode.id.desc()).limit(limit).offset(limit * (page - 1)))
            .scalars()
            .all()
        )
        page_count = (total + limit - 1) // limit
        return list(promocodes), page_count

    def _stored_discount(self, promocode_type: str, value: Decimal) -> int:
        if promocode_type == PromocodeType.FIXED.value:
            return transform_price(value, self.base_currency, "store")
        return int(value)

    def create(self, data: PromocodeCreate) -> Promocode:
        promocode = Promocode(
            code=data.code,
            type=data.type.value,
            discount_value=self._stored_discount(data.type.value, data.discount_value),
            usage_limit=data.usage_limit,
            usage_count=0,
            valid_from=data.valid_from,
            valid_to=data.valid_to,
        )
        self.db.add(promocode)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Promocode already exists", code=data.code)
            raise BadRequest("Promocode already exists")
        self.db.refresh(promocode)
        logger.info("Promocode created", promocode_id=promocode.id, code=promocode.code)
        return promocode

    def build_patch(self, promocode: Promocode, data: PromocodeUpdate) -> PromocodePatch:
        requested = data.model_dump(exclude_unset=True)
        values: Dict[str, Any] = {}

        new_type = requested.get("type")
        if new_type is not None:
            new_type = new_type.value if isinstance(new_type, PromocodeType) else new_type
            if new_type != promocode.type:
                values["type"] = new_type
        effective_type = values.get("type", promocode.type)

        if requested.get("discount_value") is not None:
            stored = self._stored_discount(effective_type, requested["discount_value"])
            if stored != promocode.discount_value:
                values["discount_value"] = stored
        elif "type" in values:
            raise BadRequest("Discount value is required when changing promocode type")

        for key in ("code", "valid_from", "valid_to"):
            if requested.get(key) is not None and requested[key] != getattr(promocode, key):
                values[key] = requested[key]

        patch = PromocodePatch(values)
        if not patch:
            logger.info("No fields to update", promocode_id=promocode.id)
            raise BadRequest("No changes detected")

        if effective_type == PromocodeType.PERCENT.value and values.get("discount_value", promocode.discount_value) >= 100:
            logger.info("Discount value must be less than 100% for percent promocodes", promocode_id=promocode.id)
            raise BadRequest("Discount value must be less than 100% for percent promocodes")

        valid_from = values.get("valid_from", promocode.valid_from)
        valid_to = values.get("valid_to", promocode.valid_to)
        if valid_to <= valid_from:
            logger.info("ValidTo is before ValidFrom", valid_from=valid_from, valid_to=valid_to)
            raise BadRequest("validTo must be after validFrom")

        return patch

    def update(self, promocode_id: int, data: PromocodeUpdate) -> Promocode:
        promocode = self.get(promocode_id)
        patch = self.build_patch(promocode, data)
        try:
            self.db.execute(update(Promocode).where(Promocode.id == promocode_id).values(**patch.values))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Promocode already exists", code=patch.values.get("code"))
            raise BadRequest("Promocode already exists")
        self.db.refresh(promocode)
        return promocode

    def remove(self, promocode_id: int) -> None:
        promocode = self.get(promocode_id)
        self.db.delete(promocode)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Promocode is referenced by orders", promocode_id=promocode_id)
            raise BadRequest("Promocode is used by existing orders")
