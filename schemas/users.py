from datetime import datetime

from pydantic import BaseModel, EmailStr


class VerifiedUserOut(BaseModel):
    id: int
    email: EmailStr
    first_name: str
    last_name: str
    is_verified: bool
    is_admin: bool
    created_at: datetime
    has_cart: bool

    class Config:
        from_attributes = True
