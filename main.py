"""
main.py
ASGI entry point for the vehicle-care booking API.

create_app() wires the payment gateway, middleware, error rendering,
routers and Prometheus metrics; the lifespan hook opens the database
and Redis and seeds a catalog in development.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import func, select, text

import config.redis_client as redis_state
from config.database import close_db, engine, get_db_context, init_db
from config.redis_client import RedisCache, close_redis, init_redis
from config.settings import settings
from services.payment.gateway import RazorpayGateway
from shared.models.models import Service
from shared.schemas.schemas import ErrorResponse
from shared.utils.errors import AppError
from shared.utils.log_config import configure_logging

from services.admin.router import router as admin_router
from services.booking.router import router as booking_router
from services.payment.router import router as payment_router
from services.staff.router import router as staff_router

configure_logging()
logger = logging.getLogger(__name__)

UNMETERED_PATHS = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}

API_DESCRIPTION = """
## Vehicle Care Booking API

- **Slots**: hourly calendar declared and opened by admins
- **Checkout**: the Razorpay order carries the booking intent; a booking
  exists only once its payment is verified
- **Bookings**: pending → confirmed → completed, plus cancelled and
  couldn't-reach outcomes
- **Staff**: assigned staff close out their own jobs

Protected endpoints expect `Authorization: Bearer <access_token>`.
Roles: `customer`, `staff`, `admin`.
"""

DEV_CATALOG = [
    {
        "name": "Exterior Foam Wash",
        "description": "Foam wash, rinse and hand dry",
        "pricing": [
            {"vehicle_type": "hatchback", "price": 399},
            {"vehicle_type": "sedan", "price": 499},
            {"vehicle_type": "suv", "price": 599},
            {"vehicle_type": "bike", "price": 199},
        ],
    },
    {
        "name": "Interior Deep Clean",
        "description": "Vacuum, upholstery shampoo and dashboard polish",
        "pricing": [
            {"vehicle_type": "hatchback", "price": 899},
            {"vehicle_type": "sedan", "price": 999},
            {"vehicle_type": "suv", "price": 1199},
        ],
    },
    {
        "name": "Bike Service",
        "description": "Chain lube, wash and general check",
        "pricing": [{"vehicle_type": "bike", "price": 349}],
    },
]


async def seed_catalog() -> None:
    """Insert DEV_CATALOG into an empty services table."""
    async with get_db_context() as db:
        if await db.scalar(select(func.count(Service.id))):
            return
        db.add_all(Service(**entry) for entry in DEV_CATALOG)
    logger.info(f"Seeded {len(DEV_CATALOG)} services")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} ({settings.APP_ENV})")
    await init_db()
    await init_redis()
    if settings.APP_ENV == "development":
        await seed_catalog()
    if not app.state.payment_gateway.configured:
        logger.warning("Razorpay credentials missing: checkout is disabled")
    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} ready")

    yield

    await close_redis()
    await close_db()
    logger.info("Shutdown complete")


# ── Middleware ────────────────────────────────────────────────

def _register_middleware(app: FastAPI) -> None:
    # Starlette runs the last-added middleware first
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    @app.middleware("http")
    async def unauthenticated_rate_limit(request: Request, call_next):
        """Per-IP fixed window for anonymous callers; fails open without Redis."""
        client = redis_state.redis_client
        if (
            client is None
            or request.url.path in UNMETERED_PATHS
            or request.headers.get("Authorization", "").startswith("Bearer ")
        ):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        try:
            allowed = await RedisCache(client).check_rate_limit(
                f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
            )
        except Exception as e:
            logger.error(f"Rate limit check failed: {e}")
            allowed = True

        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_ip}")
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests", "code": "rate_limited"},
                headers={"Retry-After": "60"},
            )
        return await call_next(request)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        """Tag the request with an id and report how long it took."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}ms"
        return response


# ── Error rendering ───────────────────────────────────────────

def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        request_id = getattr(request.state, "request_id", None)
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}", extra={"request_id": request_id})
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(detail=exc.message, code=exc.code, request_id=request_id).model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"Unhandled {type(exc).__name__}: {exc}", exc_info=True, extra={"request_id": request_id})
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                detail=str(exc) if settings.DEBUG else "An internal server error occurred",
                code="internal_error",
                request_id=request_id,
            ).model_dump(),
        )


# ── Routes ────────────────────────────────────────────────────

def _register_routes(app: FastAPI) -> None:

    @app.get("/health", include_in_schema=False)
    async def health_check():
        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if redis_state.redis_client is not None:
                await redis_state.redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            checks["status"] = "degraded"

        breaker_state = app.state.payment_gateway.breaker.current_state
        checks["payment_gateway"] = "open" if breaker_state == "open" else "ok"

        return JSONResponse(content=checks, status_code=200 if checks["status"] == "ok" else 503)

    @app.get("/", include_in_schema=False)
    async def root():
        return {"name": settings.APP_NAME, "version": settings.APP_VERSION, "docs": "/docs"}

    for router in (booking_router, payment_router, staff_router, admin_router):
        app.include_router(router)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=API_DESCRIPTION,
        lifespan=lifespan,
    )
    # One adapter per process so every request sees the same breaker state
    app.state.payment_gateway = RazorpayGateway.from_settings()

    _register_middleware(app)
    _register_error_handlers(app)
    _register_routes(app)
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
    )
