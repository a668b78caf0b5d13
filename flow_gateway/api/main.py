"""FastAPI application factory"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from flow_gateway.api.middleware import MetricsMiddleware, RequestIDMiddleware
from flow_gateway.api.v1 import intents, plans, transactions
from flow_gateway.config import settings
from flow_gateway.infrastructure.database.session import init_db
from flow_gateway.infrastructure.observability.logging import setup_logging
from flow_gateway.services.jobs import poll_pending_jobs

# Setup structured logging
setup_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, then keep draining pending jobs (first pass runs immediately)"""
    init_db()
    poller = asyncio.create_task(poll_pending_jobs(settings.job_poll_interval_seconds))
    logger.info("FLOW gateway started", extra={"runtime_mode": settings.runtime_mode})
    try:
        yield
    finally:
        poller.cancel()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="FLOW Payment Gateway",
        description="Payment intent resolution and execution service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
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
    app.include_router(intents.router, prefix="/v1", tags=["intents"])
    app.include_router(plans.router, prefix="/v1", tags=["plans"])
    app.include_router(transactions.router, prefix="/v1", tags=["transactions"])

    return app


app = create_app()
