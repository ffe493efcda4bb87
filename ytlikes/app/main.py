from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from structlog.contextvars import bind_contextvars, reset_contextvars

from ytlikes.app.api.routes import router
from ytlikes.app.dependencies import get_poll_orchestrator, get_settings, get_telemetry
from ytlikes.app.logging_config import configure_application_logging
from ytlikes.app.models.api_contracts import HealthResponse
from ytlikes.app.repositories.common import utc_now_iso
from ytlikes.app.services.scheduler_service import SchedulerService

SERVICE_NAME = "yt-likes-listener"


def health_check() -> HealthResponse:
    return HealthResponse(status="ok", service=SERVICE_NAME, timestamp=utc_now_iso())


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    scheduler: SchedulerService | None = None

    if settings.scheduler_enabled:
        scheduler = SchedulerService(
            get_poll_orchestrator(),
            settings.poll_interval_seconds,
            telemetry=get_telemetry(),
            lock_path=settings.data_dir / "scheduler.lock",
        )
        scheduler.start()

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


async def request_context_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    telemetry = get_telemetry()
    incoming_request_id = (request.headers.get("X-Request-ID") or "").strip()
    request_id = incoming_request_id or str(uuid4())
    path = request.url.path
    context_tokens = bind_contextvars(
        http_request_id=request_id,
        http_method=request.method,
        http_path=path,
    )
    started_at = perf_counter()
    telemetry.emit("http.request.start", request_id=request_id, method=request.method, path=path)
    try:
        response = await call_next(request)
    except Exception as exc:
        telemetry.emit(
            "http.request.error",
            request_id=request_id,
            method=request.method,
            path=path,
            duration_ms=int((perf_counter() - started_at) * 1000),
            error_type=type(exc).__name__,
        )
        raise
    else:
        response.headers["X-Request-ID"] = request_id
        telemetry.emit(
            "http.request.finish",
            request_id=request_id,
            method=request.method,
            path=path,
            duration_ms=int((perf_counter() - started_at) * 1000),
            status_code=response.status_code,
        )
        return response
    finally:
        reset_contextvars(**context_tokens)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="YT Likes Listener API", version="0.1.0", lifespan=app_lifespan)

    app.middleware("http")(request_context_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        response_model=HealthResponse,
        tags=["system"],
        operation_id="health_check",
    )
    return app
