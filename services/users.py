from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.orm import Session

from core.config import settings
from core.db import atomic
from core.errors import NotFound
from core.logging import get_logger
from models.user import User
from services.carts import CartService

logger = get_logger(__name__)


def verify_account(db: Session, carts: CartService, user_id: int) -> User:
    """Mark the account verified and give it its cart."""
    with atomic(db):
        user = db.get(User, user_id)
        if not user:
            logger.info("Verify account failed: user not found", user_id=user_id)
            raise NotFound("User not found")
        user.is_verified = True
        carts.create_if_not_exists(user.id)
    logger.info("Account verified", user_id=user_id)
    return user


def delete_not_verified_users(db: Session, now: datetime | None = None, ttl_hours: int = settings.UNVERIFIED_USER_TTL_HOURS) -> int:
    """Remove accounts still unverified after the TTL. Carts go with them."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=ttl_hours)
    with atomic(db):
        result = db.execute(
            delete(User).where(User.is_verified.is_(False), User.created_at < cutoff)
        )
    if result.rowcount:
        logger.info("Not verified users deleted", count=result.rowcount)
    return result.rowcount
