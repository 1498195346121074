"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.responses import Response

from storefront_payments.api.dependencies import get_runtime_config
from storefront_payments.api.middleware import RequestIDMiddleware, MetricsMiddleware
from storefront_payments.api.v1 import admin, delivery, payment
from storefront_payments.config import RuntimeConfig, settings
from storefront_payments.infrastructure.database.models import Base
from storefront_payments.infrastructure.database.session import engine, get_db
from storefront_payments.infrastructure.observability.logging import setup_logging

setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_schema_on_startup:
        Base.metadata.create_all(bind=engine)
    logging.info("Storefront payments started", extra={"step": "startup"})
    yield


def create_app() -> FastAPI:
    """Create and configure the payments API"""
    app = FastAPI(
        title="Storefront Payments",
        description="Payment intents, gateway reconciliation and delivery credentials",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Last added runs first: request ID is set before metrics are taken
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check(db: Session = Depends(get_db), config: RuntimeConfig = Depends(get_runtime_config)):
        db.execute(text("SELECT 1"))
        return {
            "status": "ok",
            "service": settings.service_name,
            "gateway_configured": config.gateway_configured,
            "demo_mode": config.demo_mode,
        }

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Storefront-facing routes live under /api
    for router, tag in ((payment.router, "payments"), (delivery.router, "delivery"), (admin.router, "admin")):
        app.include_router(router, prefix="/api", tags=[tag])

    return app


app = create_app()
