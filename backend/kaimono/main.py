import logging
from contextlib import asynccontextmanager
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from kaimono.adapters.stripe_gateway import StripeGateway
from kaimono.api.health import router as health_router
from kaimono.api.routes_addresses import router as addresses_router
from kaimono.api.routes_admin import router as admin_router
from kaimono.api.routes_auth import router as auth_router
from kaimono.api.routes_banners import router as banners_router
from kaimono.api.routes_campaigns import router as campaigns_router
from kaimono.api.routes_cart import router as cart_router
from kaimono.api.routes_catalogue import router as catalogue_router
from kaimono.api.routes_categories import router as categories_router
from kaimono.api.routes_checkout import router as checkout_router
from kaimono.api.routes_favorites import router as favorites_router
from kaimono.api.routes_inventory import router as inventory_router
from kaimono.api.routes_order import router as order_router
from kaimono.api.routes_reviews import router as reviews_router
from kaimono.api.routes_sales import router as sales_router
from kaimono.config import Settings, settings as default_settings
from kaimono.db import Database
from kaimono.errors import ShopError
from kaimono.services.campaign_service import CampaignService
from kaimono.utils.log import configure_logging

log = logging.getLogger(__name__)


def _error(status_code: int, message, details=None) -> JSONResponse:
    body = {"success": False, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI):
    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        if exc.status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error(exc.status_code, exc.message, exc.details)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        response = _error(exc.status_code, exc.detail)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            f"{'.'.join(str(p) for p in e.get('loc', ()) if p != 'body')}: {e.get('msg')}"
            for e in exc.errors()
        ]
        return _error(400, "; ".join(errors) or "Invalid request", {"errors": errors})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.exception("unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal server error")


def _campaign_sweep(database: Database):
    db = database.session()
    try:
        CampaignService(db).deactivate_expired()
    except Exception:
        log.exception("campaign sweep failed")
        db.rollback()
    finally:
        db.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    database = Database(settings.DATABASE_URL)
    gateway = StripeGateway(
        settings.STRIPE_SECRET_KEY,
        settings.STRIPE_WEBHOOK_SECRET,
        settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # startup
        app.state.database.init_db()

        scheduler = None
        if settings.SCHEDULER_ENABLED:
            scheduler = BackgroundScheduler()
            scheduler.add_job(
                _campaign_sweep,
                "interval",
                seconds=settings.CAMPAIGN_SWEEP_SECONDS,
                args=[app.state.database],
                id="deactivate_expired_campaigns",
            )
            scheduler.start()
            log.info("scheduler started (campaign sweep every %ss)", settings.CAMPAIGN_SWEEP_SECONDS)

        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
            app.state.database.dispose()

    app = FastAPI(title="Kaimono - Backend", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.payment_gateway = gateway

    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.FRONTEND_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api", tags=["health"])
    app.include_router(auth_router)
    app.include_router(catalogue_router)
    app.include_router(categories_router)
    app.include_router(cart_router)
    app.include_router(addresses_router)
    app.include_router(checkout_router)
    app.include_router(order_router)
    app.include_router(campaigns_router)
    app.include_router(reviews_router)
    app.include_router(favorites_router)
    app.include_router(banners_router)
    app.include_router(sales_router)
    app.include_router(inventory_router)
    app.include_router(admin_router)

    return app


app = create_app()
