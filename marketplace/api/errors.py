# marketplace/api/errors.py
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketplace.domain.errors import ServiceError
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


def error_response(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    error = {"code": code, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"success": False, "error": error}))


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.info
    log(f"{request.method} {request.url.path} -> {exc.http_status} {exc.code}: {exc.message}")
    return error_response(exc.http_status, exc.code, exc.message, exc.details)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg")}
        for e in exc.errors()
    ]
    first = errors[0]["message"] if errors else "Invalid request"
    return error_response(400, "VALIDATION_ERROR", first, errors)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # full traceback goes to the log only
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, "INTERNAL_SERVER_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
