# healthnet/main.py
from contextlib import asynccontextmanager
import logging

from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI

from healthnet.core.config import get_settings
from healthnet.core.error_handlers import setup_exception_handlers
from healthnet.database import create_db_and_tables

# Import models so SQLModel metadata is populated before create_all()
from healthnet.models import user as _user_models  # noqa: F401
from healthnet.models import drug as _drug_models  # noqa: F401
from healthnet.models import cart as _cart_models  # noqa: F401
from healthnet.models import order as _order_models  # noqa: F401
from healthnet.models import payment as _payment_models  # noqa: F401
from healthnet.models import delivery as _delivery_models  # noqa: F401

# Routers
from healthnet.routers.cart import router as cart_router
from healthnet.routers.orders import router as orders_router
from healthnet.routers.admin_orders import router as admin_orders_router
from healthnet.routers.payments import router as payments_router
from healthnet.routers.delivery import router as delivery_router
from healthnet.routers.delivery import admin_router as admin_delivery_router
from healthnet.routers.inventory import router as inventory_router

settings = get_settings()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
      - Verify DB connectivity and create tables.

    Shutdown:
      - No special cleanup needed for sync engine.
    """
    logger.info("Startup: connecting to database...")
    try:
        create_db_and_tables()
        logger.info("Startup: DB connection OK, tables verified.")
    except Exception as e:
        logger.error(f"Startup: DB connection FAILED: {e}")
        raise
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    lifespan=lifespan,
)

setup_exception_handlers(app)


# --- CORS configuration ---
origins = [
    settings.FRONTEND_URL,
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Versioned API prefix, e.g. /api/v1
app.include_router(cart_router, prefix=settings.API_V1_STR)
app.include_router(orders_router, prefix=settings.API_V1_STR)
app.include_router(admin_orders_router, prefix=settings.API_V1_STR)
app.include_router(payments_router, prefix=settings.API_V1_STR)
app.include_router(delivery_router, prefix=settings.API_V1_STR)
app.include_router(admin_delivery_router, prefix=settings.API_V1_STR)
app.include_router(inventory_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "healthnet-backend"}
