from fastapi import APIRouter, Depends

from core.deps import get_current_user, get_payment_service
from models.user import User
from schemas.payment import PaymentCreateRequest, PaymentCreateResponse, PaymentOut, PaymentSessionRequest
from services.money import transform_price
from services.payments import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


def _payment_out(payment) -> dict:
    return {
        "id": payment.id,
        "provider": payment.provider,
        "checkout_session_id": payment.checkout_session_id,
        "amount": transform_price(payment.amount, payment.currency, "read"),
        "currency": payment.currency,
        "status": payment.status,
    }


@router.post("/", response_model=PaymentCreateResponse, status_code=201)
def create_payment(
    data: PaymentCreateRequest, user: User = Depends(get_current_user), payments: PaymentService = Depends(get_payment_service)
):
    return {"redirect_url": payments.create_payment(user.id, data.order_number)}


@router.post("/capture", response_model=PaymentOut)
def capture_payment(
    data: PaymentSessionRequest, user: User = Depends(get_current_user), payments: PaymentService = Depends(get_payment_service)
):
    return _payment_out(payments.capture_payment(user.id, data.session_id))


@router.post("/cancel", response_model=PaymentOut)
def cancel_payment(
    data: PaymentSessionRequest, user: User = Depends(get_current_user), payments: PaymentService = Depends(get_payment_service)
):
    return _payment_out(payments.cancel_payment(user.id, data.session_id))
