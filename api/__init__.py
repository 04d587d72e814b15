"""REST API module for the marketplace checkout.

This module provides HTTP endpoints for:
- Reserving items with pending card or crypto orders
- Order status, details and cancellation
- Stripe and Alchemy payment webhooks
- Health checks
"""

import logging
import asyncio
from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI, Depends, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import get_settings
from database import init_db, close as db_close
from orders import OrderManager
from .dependencies import get_db_pool

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXPIRATION_INTERVAL = 60  # seconds

# Background task for order expiration
async def expire_orders_task(manager: OrderManager, interval: float = EXPIRATION_INTERVAL):
    """Background task to expire stale pending orders."""
    while True:
        try:
            await asyncio.sleep(interval)
            await manager.expire_pending_orders()
        except Exception as e:
            # Keep the task alive; the next run retries
            logger.error(f"Error in order expiration task: {e}")

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    settings = get_settings()
    pool = await init_db(settings.db_url)

    expiration_task = asyncio.create_task(expire_orders_task(OrderManager(pool=pool, settings=settings)))
    logger.info(
        f"Started order expiration task "
        f"(expires after {settings.order_expiration_minutes} minutes)"
    )

    yield

    logger.info("Shutting down API...")
    expiration_task.cancel()
    try:
        await expiration_task
    except asyncio.CancelledError:
        pass
    await db_close()

# Create FastAPI app
app = FastAPI(
    title="Marketplace Checkout API",
    description="Order reservation and payment finalization for the marketplace",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report request validation failures as 400 Bad Request."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={'detail': jsonable_encoder(exc.errors())}
    )

@app.get("/health", tags=["System"])
async def health(pool: asyncpg.Pool = Depends(get_db_pool)):
    """Report database connectivity."""
    try:
        async with pool.acquire() as conn:
            await conn.fetchval('SELECT 1')
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={'status': 'unhealthy', 'database': 'unreachable'}
        )
    return {'status': 'healthy', 'database': 'ok'}

# Import and include all routers
from .orders import router as orders_router
from .webhooks import router as webhooks_router

app.include_router(orders_router)
app.include_router(webhooks_router)
