"""FastAPI application entry point.

Wires together: middleware, exception handlers, routes, metrics.
Owns the health data cache: builds it on startup, closes it on shutdown.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from healthcache.adapters.factory import get_health_store
from healthcache.api import router as cache_router
from healthcache.domain.models import SampleStreamKind
from healthcache.pipeline import HealthDataCache
from shared.config import settings
from shared.database import async_session_factory, engine, init_db
from shared.exceptions import HealthCacheError, ProblemDetailError
from shared.logging import configure_logging
from shared.metrics import create_metrics_app
from shared.middleware import (
    RequestIdMiddleware,
    health_cache_error_handler,
    http_exception_handler,
    problem_detail_handler,
    request_validation_handler,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    configure_logging(json_output=True)
    logger.info(
        "app_starting",
        provider_mode=settings.provider_mode,
        database_url=settings.database_url,
        streams=settings.cache_streams,
    )
    await init_db(engine)
    cache = await HealthDataCache.build(get_health_store(), async_session_factory)
    app.state.cache = cache
    if settings.autostart_caching:
        await cache.authorize_and_start_caching(
            {SampleStreamKind(s) for s in settings.cache_streams}
        )
    yield
    logger.info("app_shutting_down")
    await cache.close()
    app.state.cache = None
    await engine.dispose()


app = FastAPI(
    title="Health Sample Cache API",
    description=(
        "Caches blood glucose and workout samples from the device health store "
        "into a durable upload queue and reports cache statistics."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestIdMiddleware)

# All errors emit application/problem+json (RFC 9457)
app.add_exception_handler(ProblemDetailError, problem_detail_handler)
app.add_exception_handler(HealthCacheError, health_cache_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)

app.include_router(cache_router)

metrics_app = create_metrics_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    return {"status": "ok"}
