import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from shiftops.db import create_db_engine, create_session_factory
from shiftops.errors import ApiError, error_response
from shiftops.logging_utils import setup_json_logging
from shiftops.routers import attendance, schedules
from shiftops.services.notification_ledger import EmailChannel
from shiftops.settings import Settings, get_cors_origins, get_settings

setup_json_logging()
logger = logging.getLogger("shiftops.request")


async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "employee_id": getattr(request.state, "employee_id", None),
                "session_id": getattr(request.state, "session_id", None),
                "location_status": getattr(request.state, "location_status", None),
            },
        )


async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    engine = create_db_engine(settings)

    app_instance = FastAPI(title=settings.app_name, version="0.1.0")
    app_instance.state.settings = settings
    app_instance.state.engine = engine
    app_instance.state.session_factory = create_session_factory(engine)

    app_instance.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app_instance.middleware("http")(request_middleware)

    app_instance.add_exception_handler(ApiError, handle_api_error)
    app_instance.add_exception_handler(HTTPException, handle_http_exception)
    app_instance.add_exception_handler(RequestValidationError, handle_validation_error)
    app_instance.add_exception_handler(Exception, handle_unexpected_error)

    app_instance.include_router(attendance.router)
    app_instance.include_router(schedules.router)
    app_instance.include_router(schedules.admin_router)

    @app_instance.get("/health")
    def health() -> dict[str, Any]:
        database_ok = True
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except Exception:
            logger.exception("health_database_unreachable")
            database_ok = False
        return {
            "status": "ok" if database_ok else "degraded",
            "database": database_ok,
            "notification_email": EmailChannel(settings).configured,
        }

    return app_instance


app = create_app()
