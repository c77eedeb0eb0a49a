"""
Tiffin Subscriptions — FastAPI Backend
Meal plan purchase, delivery zones and vendor assignment
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from db.database import engine, Base
from errors import DomainError
from routers import (
    zones, plans, subscriptions, vendor_assignments, admin, vendors, webhooks, transactions, promo_codes,
)
from services import locks, payment_gateway
from services.scheduler import daily_jobs_loop

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("tiffin")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    if settings.auto_create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    scheduler_task = asyncio.create_task(daily_jobs_loop()) if settings.scheduler_enabled else None
    logger.info("Tiffin API starting (%s)", settings.environment)
    yield
    # Shutdown
    if scheduler_task:
        scheduler_task.cancel()
        with suppress(asyncio.CancelledError):
            await scheduler_task
    await payment_gateway.close()
    await locks.close_redis()
    await engine.dispose()
    logger.info("Tiffin API shut down.")


app = FastAPI(
    title="Tiffin Subscriptions API",
    description="Meal subscription purchase, delivery zones and vendor assignment backend",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ───────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Errors ─────────────────────────────────────────────────
@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    body = {
        "success": False,
        "status_code": exc.status_code,
        "message": exc.message,
        "data": exc.data,
    }
    if settings.environment != "production":
        body["path"] = request.url.path
    return JSONResponse(status_code=exc.status_code, content=body)


# ── Routers ────────────────────────────────────────────────
app.include_router(zones.router, prefix="/api/zones", tags=["Delivery Zones"])
app.include_router(plans.router, prefix="/api/plans", tags=["Plans"])
app.include_router(subscriptions.router, prefix="/api/subscriptions", tags=["Subscriptions"])
app.include_router(vendor_assignments.router, prefix="/api/admin/vendor-requests", tags=["Vendor Assignment"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin Dashboard"])
app.include_router(vendors.router, prefix="/api/vendors", tags=["Vendors"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Payment Webhooks"])
app.include_router(transactions.router, prefix="/api/transactions", tags=["Transactions"])
app.include_router(transactions.admin_router, prefix="/api/admin/transactions", tags=["Admin Transactions"])
app.include_router(promo_codes.router, prefix="/api/promo-codes", tags=["Promo Codes"])
app.include_router(promo_codes.admin_router, prefix="/api/admin/promo-codes", tags=["Admin Promo Codes"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "Tiffin Subscriptions API"}


@app.get("/health/db")
async def health_db():
    """Verify the DB connection."""
    from sqlalchemy import text
    try:
        async with engine.connect() as conn:
            row = (await conn.execute(text("SELECT current_database()"))).first()
        return {"status": "ok", "database": row[0]}
    except Exception as e:
        logger.warning("DB health check failed: %s", e)
        return {"status": "error", "detail": str(e)}
