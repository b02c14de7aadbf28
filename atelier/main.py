from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from atelier.config import settings
from atelier.api.v1.router import api_router
from atelier.database import init_db, async_session_factory
from atelier.jobs.scheduler import start_scheduler, shutdown_scheduler
from atelier.middleware.tenant import tenant_middleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create the public schema tables and start the scheduler.

    Tenant schemas are created during onboarding.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()
    start_scheduler()

    yield

    shutdown_scheduler()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Onboarding", "description": "Shop registration and subdomain checks"},
    {"name": "Authentication", "description": "JWT access/refresh tokens, customer sign-up"},
    {"name": "Users", "description": "Team management and tailors"},
    {"name": "Products", "description": "Product catalog, stock movements and alerts"},
    {"name": "Categories", "description": "Product categories"},
    {"name": "Storefront", "description": "Public catalog, coupon check and checkout"},
    {"name": "Coupons", "description": "Discount codes"},
    {"name": "Orders", "description": "Order management, notes, refunds and shipping methods"},
    {"name": "Payments", "description": "PaiementPro / Razorpay initialization and webhooks"},
    {"name": "Invoices", "description": "Invoices and invoice payments"},
    {"name": "Receipts", "description": "Payment receipts"},
    {"name": "Custom Orders", "description": "Made-to-measure orders, garments, payments and timeline"},
    {"name": "Production", "description": "Workshop kanban"},
    {"name": "Customers", "description": "CRM: customers, measurements, notes and messages"},
    {"name": "Notifications", "description": "SMS / WhatsApp / e-mail settings, templates and logs"},
    {"name": "Campaigns", "description": "Bulk SMS / WhatsApp campaigns"},
    {"name": "Reports", "description": "Dashboard and daily sales report"},
]

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Multi-tenant storefront and tailoring back-office API. Amounts are in CFA francs.",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.middleware("http")(tenant_middleware)

app.include_router(api_router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        status_code = exc.status_code
        error_message = exc.detail
    else:
        status_code = 500
        error_message = str(exc)
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)

    response = JSONResponse(
        status_code=status_code,
        content={
            "error": error_message,
            "type": type(exc).__name__,
            "path": str(request.url.path),
            "method": request.method,
        },
    )

    # Error responses bypass CORSMiddleware
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins_list or "*" in settings.cors_origins_list:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check with database validation; 503 when the database is unreachable."""
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)
    return health_status


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
