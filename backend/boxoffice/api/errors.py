"""
Exception handlers that turn domain errors into typed JSON responses.

Body shape: {"code": "<ERROR_CODE>", "detail": "<message>", ...extra}
"""

from typing import Any, Callable, Coroutine

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.responses import Response

from boxoffice.core.errors import DomainError
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

ExceptionHandler = Callable[[Request, Exception], Coroutine[Any, Any, Response]]


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = exc if isinstance(exc, DomainError) else DomainError(str(exc))
    if error.status_code >= 500:
        logger.error("domain_error", code=error.code.value, detail=error.message, **error.extra)
    else:
        logger.info("domain_error", code=error.code.value, detail=error.message)
    return JSONResponse(
        status_code=error.status_code,
        content={"code": error.code.value, "detail": error.message, **error.extra},
    )


async def general_500_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"code": "INTERNAL_ERROR", "detail": "Internal server error"},
    )


EXCEPTION_HANDLERS: dict[type[Exception], ExceptionHandler] = {
    DomainError: domain_error_handler,
    Exception: general_500_exception_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
