# app/main.py
from contextlib import asynccontextmanager
import logging

from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.errors import CommerceError
from app.database import create_db_and_tables
from app.jobs import start_background_sweeps, stop_background_sweeps

# Import models so SQLModel metadata is populated before create_all()
from app.models import user as _user_models  # noqa: F401
from app.models import company as _company_models  # noqa: F401
from app.models import product as _product_models  # noqa: F401
from app.models import cart as _cart_models  # noqa: F401
from app.models import order as _order_models  # noqa: F401
from app.models import ledger as _ledger_models  # noqa: F401
from app.models import payment as _payment_models  # noqa: F401
from app.models import shipment as _shipment_models  # noqa: F401


# Routers
from app.routers.cart import router as cart_router
from app.routers.orders import router as orders_router
from app.routers.payments import router as payments_router
from app.routers.webhooks import router as webhooks_router
from app.routers.shipments import router as shipments_router
from app.routers.ledger import router as ledger_router
from app.routers.admin_sweeps import router as admin_sweeps_router

settings = get_settings()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
      - Verify DB connectivity and create tables.
      - Start the payment-timeout and shipment-refresh loops.

    Shutdown:
      - Cancel the loops.
    """
    logger.info("🔄 Startup: Connecting to Postgres...")
    try:
        create_db_and_tables()
        logger.info("✅ Startup: DB connection OK, tables verified.")
    except Exception as e:
        logger.error(f"❌ Startup: DB connection FAILED: {e}")
        raise

    tasks = []
    if settings.ENABLE_BACKGROUND_SWEEPS:
        tasks = start_background_sweeps()
        logger.info("⏱️ Startup: background sweeps scheduled.")
    yield
    await stop_background_sweeps(tasks)


app = FastAPI(
    title=settings.PROJECT_NAME or "B2B Commerce API",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(CommerceError)
async def commerce_error_handler(request: Request, exc: CommerceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Storefront and back-office origins; override with CORS_ORIGINS as a JSON list.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Versioned API prefix, e.g. /api/v1
app.include_router(cart_router, prefix=settings.API_V1_STR)
app.include_router(orders_router, prefix=settings.API_V1_STR)
app.include_router(payments_router, prefix=settings.API_V1_STR)
app.include_router(shipments_router, prefix=settings.API_V1_STR)
app.include_router(ledger_router, prefix=settings.API_V1_STR)
app.include_router(admin_sweeps_router, prefix=settings.API_V1_STR)
app.include_router(webhooks_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "b2b-commerce-core"}
