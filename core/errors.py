from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    """Base class for failures raised by the service layer."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class BadRequest(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class OutOfStock(ServiceError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, sku_id: int, message: str | None = None):
        super().__init__(message or f"Not enough stock available for product sku {sku_id}")
        self.sku_id = sku_id


class PromocodeInvalid(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class LimitExceeded(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidState(ServiceError):
    status_code = status.HTTP_409_CONFLICT


class RatesUnavailable(ServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Currency conversion temporarily unavailable"):
        super().__init__(message)


class PaymentGatewayError(ServiceError):
    status_code = status.HTTP_502_BAD_GATEWAY


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
