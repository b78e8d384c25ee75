import logging
import os
import sys
import time
import uuid
from typing import Callable, Iterable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from wakili.api.routes_availability import router as availability_router
from wakili.api.routes_consultations import router as consultations_router
from wakili.api.routes_escrow import router as escrow_router
from wakili.api.routes_health import router as health_router
from wakili.api.routes_metrics import router as metrics_router
from wakili.api.routes_payments import router as payments_router
from wakili.api.routes_verification import router as verification_router
from wakili.domain.errors import DomainError
from wakili.infra.db import get_session_factory
from wakili.infra.logging import configure_logging
from wakili.infra.metrics import configure_metrics
from wakili.infra.notifications import resolve_notification_sink
from wakili.infra.verification_store import create_verification_store
from wakili.settings import settings

PROBLEM_TYPE_VALIDATION = "https://wakili.pro/problems/validation-error"
PROBLEM_TYPE_DOMAIN = "https://wakili.pro/problems/domain-error"
PROBLEM_TYPE_SERVER = "https://wakili.pro/problems/server-error"

logger = logging.getLogger(__name__)


def problem_details(
    request: Request,
    status: int,
    title: str,
    detail: str,
    errors: list[dict[str, str]] | None = None,
    type_: str = "about:blank",
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content = {
        "type": type_,
        "title": title,
        "status": status,
        "detail": detail,
        "request_id": getattr(request.state, "request_id", None),
        "errors": errors or [],
    }
    return JSONResponse(status_code=status, content=content, headers=headers)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_logger = logging.getLogger("wakili.request")
        start = time.time()
        response = await call_next(request)
        latency_ms = int((time.time() - start) * 1000)
        if response.status_code >= 500:
            metrics_client = getattr(request.app.state, "metrics", None)
            if metrics_client is not None:
                metrics_client.record_http_5xx(request.method, request.url.path)
        request_logger.info(
            "request",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_ms": latency_ms,
            },
        )
        return response


def _resolve_cors_origins(app_settings) -> Iterable[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    if app_settings.app_env == "dev":
        return ["http://localhost:3000"]
    return []


def _validate_prod_config(app_settings) -> None:
    if app_settings.app_env == "dev" or app_settings.testing or os.getenv("PYTEST_CURRENT_TEST") or "pytest" in sys.argv[0]:
        return

    errors: list[str] = []
    if app_settings.auth_secret_key == "dev-auth-secret":
        errors.append("AUTH_SECRET_KEY must be set outside dev")
    if not app_settings.mpesa_callback_token:
        errors.append("MPESA_CALLBACK_TOKEN is required outside dev")

    if errors:
        for error in errors:
            logger.error("startup_config_error", extra={"extra": {"detail": error}})
        raise RuntimeError("Invalid production configuration; see logs for details")


def create_app(app_settings) -> FastAPI:
    configure_logging()
    _validate_prod_config(app_settings)
    app = FastAPI(title="Wakili Consultations", version="1.0.0")

    verification_store = create_verification_store(app_settings)
    app.state.app_settings = app_settings
    app.state.db_session_factory = get_session_factory()
    app.state.metrics = configure_metrics(app_settings.metrics_enabled)
    app.state.notification_sink = resolve_notification_sink(app_settings)
    app.state.verification_store = verification_store
    app.state.clock = None

    @app.on_event("shutdown")
    async def shutdown_verification_store() -> None:
        await verification_store.close()

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(_resolve_cors_origins(app_settings)),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = error.get("loc", [])
            field = ".".join(str(part) for part in loc if part not in {"body", "query", "path"}) or "body"
            errors.append({"field": field, "message": error.get("msg", "Invalid value")})
        return problem_details(
            request=request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            errors=errors,
            type_=PROBLEM_TYPE_VALIDATION,
        )

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors or [],
            type_=exc.type or PROBLEM_TYPE_DOMAIN,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.detail if isinstance(exc.detail, str) else "HTTP Error",
            detail=exc.detail if isinstance(exc.detail, str) else "Request failed",
            type_=PROBLEM_TYPE_DOMAIN if exc.status_code < 500 else PROBLEM_TYPE_SERVER,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
        )
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail="Unexpected error",
            type_=PROBLEM_TYPE_SERVER,
        )

    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(availability_router)
    app.include_router(consultations_router)
    app.include_router(payments_router)
    app.include_router(escrow_router)
    app.include_router(verification_router)
    return app


app = create_app(settings)
