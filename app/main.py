"""
Main Application - FastAPI application setup.

Ad networks retry on any non-2xx answer, so every request is logged and
counted with a request id that is echoed back in ``X-Request-ID``.
"""

import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.api.routes import router
from app.config import settings
from app.db.session import close_engines
from app.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from app.observability.tracing import instrument_fastapi

setup_logging()
logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log the enabled reward platforms on startup; dispose the engine on shutdown."""
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        reward_platforms=settings.reward_platforms,
        admob_keys_url=settings.ADMOB_KEYS_URL,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    yield

    logger.info("application_shutting_down")
    await close_engines()


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)

setup_tracing()
instrument_fastapi(app)


def _from_trusted_proxy(request: Request) -> bool:
    trusted = settings.trusted_proxy_ips
    if "*" in trusted:
        return True
    return request.client is not None and request.client.host in trusted


def _endpoint_label(request: Request) -> str:
    """Route template for metric labels, so query strings never become labels."""
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


@app.middleware("http")
async def request_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Honour X-Forwarded-Proto from trusted proxies, bind a request id, log and time."""
    forwarded_proto = request.headers.get("X-Forwarded-Proto")
    if forwarded_proto in ("http", "https") and _from_trusted_proxy(request):
        request.scope["scheme"] = forwarded_proto

    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    method = request.method
    started = time.perf_counter()

    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=request.url.path)
        try:
            response = await call_next(request)
        except Exception as exc:
            duration = time.perf_counter() - started
            metrics.record_http_request(_endpoint_label(request), method, 500, duration)
            metrics.record_error(type(exc).__name__, "http_request")
            logger.error(
                "request_failed",
                method=method,
                path=request.url.path,
                error=str(exc),
                duration_seconds=duration,
                exc_info=True,
            )
            raise

        duration = time.perf_counter() - started
        metrics.record_http_request(
            _endpoint_label(request), method, response.status_code, duration
        )
        logger.info(
            "request_completed",
            method=method,
            path=request.url.path,
            status_code=response.status_code,
            duration_seconds=duration,
        )

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


app.include_router(router)


@app.get("/")
async def root() -> dict[str, str]:
    """Service banner."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus metrics in text exposition format."""
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled", status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
