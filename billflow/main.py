"""
FastAPI application factory
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from billflow.config import get_settings
from billflow.infrastructure.db.schema import ensure_schema
from billflow.infrastructure.db.session import check_db_connection
from billflow.application.notifications import wait_for_notifications
from billflow.application.scheduler import start_scheduler, shutdown_scheduler
from billflow.api.v1 import (
    analytics,
    categories,
    exchange_rates,
    monthly_summary,
    notifications,
    payments,
    renewals,
    subscriptions,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(start_background_jobs: bool = True) -> FastAPI:
    """
    Application factory - creates and configures the FastAPI app

    Args:
        start_background_jobs: bootstrap the schema and run the scheduler
            for the lifetime of the app

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_background_jobs:
            ensure_schema()
            start_scheduler()
        yield
        if start_background_jobs:
            shutdown_scheduler()
        if not wait_for_notifications(timeout=10):
            logger.warning("Shutting down with notifications still in flight")

    app = FastAPI(
        title="billflow",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    # Routers
    app.include_router(subscriptions.router)
    app.include_router(payments.router)
    app.include_router(monthly_summary.router)
    app.include_router(renewals.router)
    app.include_router(exchange_rates.router)
    app.include_router(notifications.router)
    app.include_router(categories.router)
    app.include_router(categories.payment_methods_router)
    app.include_router(analytics.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (database reachable)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "billflow.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
