from contextlib import asynccontextmanager
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.routes import router as api_router
from app.bookkeeping.errors import BookkeepingError, ErrorCode
from app.context import get_correlation_id
from app.core.config import get_settings
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("app.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("system.started")
    yield


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = {
        "code": code,
        "message": message,
        "details": jsonable_encoder(details),
        "correlation_id": correlation_id,
    }
    return JSONResponse(status_code=status_code, content=payload)


app = FastAPI(title="Bookkeeping API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(BookkeepingError)
async def handle_bookkeeping_error(request: Request, exc: BookkeepingError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code.value,
        message=exc.message,
        details=exc.details,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code=ErrorCode.VALIDATION_ERROR.value,
        message="request validation failed",
        details=exc.errors(),
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = {403: ErrorCode.FORBIDDEN.value, 404: ErrorCode.NOT_FOUND.value}.get(exc.status_code, "HTTP_ERROR")
    return error_response(request, status_code=exc.status_code, code=code, message=str(exc.detail))


settings = get_settings()
if settings.otel_enabled:
    setup_otel(enable=True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
