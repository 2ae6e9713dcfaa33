import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from dotenv import load_dotenv

from core.config import settings
from core.db import Base, engine
from core.errors import register_exception_handlers
from core.logging import configure_logging, get_logger
import models  # noqa: F401
from routes.cart import router as cart_router
from routes.orders import router as orders_router, admin_router as admin_orders_router
from routes.payments import router as payments_router
from routes.promocodes import router as promocodes_router
from routes.users import router as users_router

load_dotenv()
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ensure tables exist (for dev/test; in prod use migrations)
    Base.metadata.create_all(bind=engine)
    logger.info("Application started", app=settings.APP_NAME, version=settings.APP_VERSION)
    yield
    logger.info("Application stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

register_exception_handlers(app)

app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(admin_orders_router)
app.include_router(payments_router)
app.include_router(promocodes_router)
app.include_router(users_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
    }


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
    )
