"""
Luggsters Membership Backend
Plan catalog, Stripe-backed checkout and the member dashboard API
"""

import logging
import traceback
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

# Import routers
from routers.plans_router import plans_router
from routers.payments_router import payments_router
from routers.membership_router import membership_router
from routers.webhook_router import webhook_router
from utils.rate_limit import RateLimiterMiddleware
from utils.security_utils import scrub_card_fields
from backend.utils.responses import error_response
from config.settings import Settings, settings as default_settings, STORAGE_SQL
from crud.memory_storage import MemoryStorage
from crud.storage import MembershipStorage
from database import init_db
from services.errors import MembershipError
from services.gateway import PaymentGateway, StripeGateway
from services.plan_catalog import PlanCatalog


def configure_logging(config: Settings) -> None:
    """Write all events to <LOGS_DIR>/app.log and stderr"""
    config.logs_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=config.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.logs_dir / "app.log"),
            logging.StreamHandler()
        ]
    )


configure_logging(default_settings)
logger = logging.getLogger(__name__)


def _is_render_env(config: Settings) -> bool:
    """Check if running in Render.com environment"""
    return bool(config.render or config.render_external_url or config.render_service_name)


# Uncaught exception middleware - logs all unhandled exceptions and returns 500
class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Uncaught exception: {e}\n{traceback.format_exc()}")
            return JSONResponse(
                status_code=500,
                content={"ok": False, "error": "internal_error", "message": "Internal Server Error"}
            )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses: CSP, HSTS, X-Frame-Options, X-Content-Type-Options"""

    def __init__(self, app, enforce_hsts: bool = False):
        super().__init__(app)
        self.enforce_hsts = enforce_hsts

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        # Stripe.js is the only third party the checkout talks to
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' https://js.stripe.com; "
            "frame-src https://js.stripe.com https://hooks.stripe.com; "
            "connect-src 'self' https://api.stripe.com; "
            "img-src 'self' data:; "
            "object-src 'none'; "
            "base-uri 'self'; "
            "form-action 'self';"
        )

        # Only set in production (Render environment) where HTTPS is guaranteed
        if self.enforce_hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"

        return response


async def membership_error_handler(request: Request, exc: MembershipError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(exc.error_code, status=exc.status_code, message=exc.message)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Echo only location and reason; raw input could be card data
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    body = exc.body if isinstance(exc.body, dict) else {}
    logger.warning(
        f"Rejected {request.method} {request.url.path}: {len(errors)} error(s), "
        f"fields={sorted(scrub_card_fields(body))}"
    )
    message = "Invalid payment data" if request.url.path == "/api/payments" else "Invalid request data"
    return error_response("validation_error", status=400, message=message, errors=errors)


def create_app(
    config: Optional[Settings] = None,
    storage: Optional[MembershipStorage] = None,
    gateway: Optional[PaymentGateway] = None,
    catalog: Optional[PlanCatalog] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Settings to use (defaults to the environment)
        storage: Storage handle; defaults to a fresh MemoryStorage, or per-request
            SqlStorage sessions when STORAGE_BACKEND=sql
        gateway: Billing provider adapter; defaults to StripeGateway
        catalog: Plan catalog; defaults to the built-in plans

    Returns:
        Configured FastAPI app
    """
    config = config or default_settings
    catalog = catalog or PlanCatalog()
    use_sql = storage is None and config.storage_backend == STORAGE_SQL

    app = FastAPI(title="Luggsters Membership API")
    app.state.settings = config
    app.state.catalog = catalog
    app.state.storage = None if use_sql else (storage or MemoryStorage(catalog))
    app.state.gateway = gateway or StripeGateway(
        api_key=config.stripe_secret_key,
        webhook_secret=config.stripe_webhook_secret,
        api_version=config.stripe_api_version,
        timeout_seconds=config.gateway_timeout_seconds,
    )

    app.add_exception_handler(MembershipError, membership_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.add_middleware(UncaughtExceptionMiddleware)
    app.add_middleware(
        RateLimiterMiddleware,
        requests_per_minute=config.rate_limit_per_minute,
        redis_url=config.redis_url,
    )
    app.add_middleware(SecurityHeadersMiddleware, enforce_hsts=_is_render_env(config))

    # CORS MUST be near the bottom
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def check_env_keys_on_startup():
        """Warn about missing Stripe configuration (non-fatal)"""
        missing = [
            name for name, value in (
                ("STRIPE_SECRET_KEY", config.stripe_secret_key),
                ("STRIPE_WEBHOOK_SECRET", config.stripe_webhook_secret),
            )
            if not value
        ]
        if missing:
            logger.warning(f"Startup check: Missing environment variables: {', '.join(missing)}")
        else:
            logger.info("Startup check: Stripe configuration loaded")

    if use_sql:
        @app.on_event("startup")
        async def initialize_database():
            """Create tables and seed plans for the SQL backend."""
            try:
                await init_db()
                logger.info("Database initialized successfully")
            except Exception as e:
                logger.error(f"Database initialization failed: {e}")
                raise

    @app.get("/api/health")
    async def health():
        return {"ok": True}

    @app.get("/api/config")
    async def client_config():
        """Public settings the checkout page needs to load Stripe.js"""
        return {"publishableKey": config.stripe_publishable_key, "currency": config.currency}

    app.include_router(plans_router)
    app.include_router(payments_router)
    app.include_router(membership_router)
    app.include_router(webhook_router)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
