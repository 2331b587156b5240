"""
Competition Core FastAPI application
Main entry point for the round and entry lifecycle service
"""

import logging
import subprocess
import time

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from competition_core import __version__
from competition_core.api.errors import register_exception_handlers
from competition_core.api.health import router as health_router
from competition_core.api.v1.admin import router as admin_router
from competition_core.api.v1.competitions import router as competitions_router
from competition_core.api.v1.entries import router as entries_router
from competition_core.core.config import settings
from competition_core.core.metrics import ACTIVE_CONNECTIONS, REQUEST_COUNT, REQUEST_DURATION
from competition_core.core.redis_client import close_redis_client

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Sentry integration
if settings.sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    from sentry_sdk.integrations.redis import RedisIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            RedisIntegration(),
        ],
        traces_sample_rate=0.1,
        environment=settings.app_env,
    )

app = FastAPI(
    title="Competition Core API",
    description="Competition rounds, entries, qualification and prize payouts",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)


@app.on_event("startup")
async def startup_event():
    """Run database migrations on startup"""
    if not settings.run_migrations_on_startup:
        return
    logger.info("Running database migrations")
    try:
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            capture_output=True,
            text=True,
            timeout=60
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.error(f"Migration error (continuing anyway): {e}")
        return
    if result.returncode == 0:
        logger.info("Database migrations completed")
    else:
        logger.warning(f"Migration warning: {result.stderr}")


@app.on_event("shutdown")
async def shutdown_event():
    await close_redis_client()


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start_time = time.time()
    ACTIVE_CONNECTIONS.inc()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration = time.time() - start_time
        ACTIVE_CONNECTIONS.dec()
        endpoint = request.scope.get("route").path if request.scope.get("route") else request.url.path
        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=status_code).inc()
        REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(duration)


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


register_exception_handlers(app)

app.include_router(health_router, prefix=settings.api_v1_prefix, tags=["health"])
app.include_router(competitions_router, prefix=settings.api_v1_prefix, tags=["competitions"])
app.include_router(entries_router, prefix=settings.api_v1_prefix, tags=["entries"])
app.include_router(admin_router, prefix=f"{settings.api_v1_prefix}/admin", tags=["admin"])
