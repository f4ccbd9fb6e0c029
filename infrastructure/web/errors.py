import logging
import sqlite3

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.use_cases.errors import (
    DomainError, ValidationError, AuthenticationError, AuthorizationError,
    NotFoundError, ConflictError, PaymentProviderError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = (
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 400),
    (PaymentProviderError, 500),
)


def status_for(exc: DomainError) -> int:
    for cls, status_code in STATUS_CODES:
        if isinstance(exc, cls):
            return status_code
    return 500


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = status_for(exc)
    headers = None
    if status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    message = exc.message
    if status_code >= 500:
        # детали ошибки провайдера только в логах
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        message = "Payment processing failed. Please try again later."
    return JSONResponse(status_code=status_code, content={"detail": message, "code": exc.code}, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "code": "VALIDATION_ERROR", "errors": jsonable_encoder(exc.errors())},
    )


async def database_error_handler(request: Request, exc: sqlite3.Error) -> JSONResponse:
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "code": "SERVER_ERROR"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(sqlite3.Error, database_error_handler)
