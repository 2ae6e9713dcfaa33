from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from core.deps import get_cart_service, require_admin
from models.user import User
from schemas.users import VerifiedUserOut
from services.carts import CartService
from services.users import verify_account

router = APIRouter(prefix="/admin/users", tags=["admin"])


@router.post("/{user_id}/verify", response_model=VerifiedUserOut)
def verify_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    carts: CartService = Depends(get_cart_service),
):
    """Hook for the authentication service once an account is confirmed."""
    user = verify_account(db, carts, user_id)
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "is_verified": user.is_verified,
        "is_admin": user.is_admin,
        "created_at": user.created_at,
        "has_cart": carts.get_user_cart(user.id) is not None,
    }
