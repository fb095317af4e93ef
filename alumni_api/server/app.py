"""FastAPI application factory."""

from __future__ import annotations

import os
import time
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from alumni_api import __version__
from alumni_api.config.loader import build_configuration
from alumni_api.config.schema import ResolvedConfiguration
from alumni_api.core.context import bind_request_id, current_request_id, reset_request_id
from alumni_api.core.logging import configure_logging, emit_metric, get_logger
from alumni_api.server.metrics import RequestMetrics


REQUEST_ID_HEADER = "X-Request-ID"


def effective_workers(requested: int, cpu_count: int | None = None) -> int:
    available = max(1, cpu_count if cpu_count is not None else (os.cpu_count() or 1))
    if requested <= 0:
        return available
    return min(requested, available)


def create_app(config: ResolvedConfiguration) -> FastAPI:
    logger = get_logger("alumni_api.server")
    metrics = RequestMetrics()
    metrics_token = (config.logs.loki_endpoint_token or "").strip()

    app = FastAPI(
        title="Alumni API",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.metrics = metrics

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next: Any) -> Response:
        token = bind_request_id()
        request_id = current_request_id()
        started = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - started) * 1000.0
            route = getattr(request.scope.get("route"), "path", request.url.path)
            metrics.observe(
                method=request.method,
                route=route,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
            logger.info(
                f"{request.method} {request.url.path} {response.status_code} {duration_ms:.1f}ms",
                extra={
                    "payload": {
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": response.status_code,
                        "duration_ms": round(duration_ms, 3),
                    }
                },
            )
            emit_metric(
                logger,
                name="http_request_duration_ms",
                value=duration_ms,
                payload={"method": request.method, "route": route, "status_code": response.status_code},
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            reset_request_id(token)

    @app.get("/health")
    def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/metrics")
    def metrics_endpoint(request: Request) -> Response:
        auth_header = request.headers.get("authorization", "")
        if not auth_header:
            return PlainTextResponse("unauthorized", status_code=401)
        if not metrics_token:
            return PlainTextResponse("Metrics endpoint disabled", status_code=503)
        scheme, _, supplied = auth_header.partition(" ")
        if scheme != "Bearer" or supplied.strip() != metrics_token:
            return PlainTextResponse("unauthorized", status_code=401)
        return Response(content=metrics.render(), media_type=metrics.content_type)

    logger.info(
        "server created",
        extra={"payload": {"tenant": config.tenant, "port": config.port}},
    )
    return app


def build_app() -> FastAPI:
    """Uvicorn factory: each worker process resolves its own configuration."""
    config = build_configuration()
    configure_logging(config.logs)
    return create_app(config)
