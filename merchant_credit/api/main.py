"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from merchant_credit.api.middleware import RequestIDMiddleware, MetricsMiddleware
from merchant_credit.api.v1 import alerts, credit_scores, transactions, webhooks
from merchant_credit.infrastructure.observability.logging import setup_logging
from merchant_credit.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Merchant Credit Gateway",
        description="Signed payment gateway integration with transaction-based credit scoring and early warning",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(transactions.router, prefix="/v1", tags=["transactions"])
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])
    app.include_router(credit_scores.router, prefix="/v1", tags=["credit-scores"])
    app.include_router(alerts.router, prefix="/v1", tags=["alerts"])

    return app


app = create_app()
