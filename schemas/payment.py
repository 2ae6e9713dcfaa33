from pydantic import BaseModel


class PaymentCreateRequest(BaseModel):
    order_number: str


class PaymentCreateResponse(BaseModel):
    redirect_url: str


class PaymentSessionRequest(BaseModel):
    session_id: str


class PaymentOut(BaseModel):
    id: int
    provider: str
    checkout_session_id: str
    amount: float
    currency: str
    status: str

    class Config:
        from_attributes = True
