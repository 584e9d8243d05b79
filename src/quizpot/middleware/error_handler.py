"""Global error handlers: every failure leaves as a JSON body."""

from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from quizpot.errors import QuizPotError, RateLimited

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(QuizPotError)
    async def domain_exception_handler(request: Request, exc: QuizPotError) -> JSONResponse:
        """Domain errors carry their own status, code and details."""
        logger.info("domain_error", path=request.url.path, code=exc.code, status=exc.status_code)
        headers: dict[str, str] = {}
        reset_time = exc.details.get("reset_time")
        if isinstance(exc, RateLimited) and isinstance(reset_time, datetime):
            retry_after = int((reset_time - datetime.now(timezone.utc)).total_seconds()) + 1
            headers["Retry-After"] = str(max(retry_after, 1))
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions; internals never reach the client."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
