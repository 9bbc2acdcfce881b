"""Map marketplace errors to HTTP responses."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from luxhub.errors import MarketplaceError

from .logging_config import get_logger

logger = get_logger("errors")

STATUS_BY_KIND = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "invalid_state": status.HTTP_400_BAD_REQUEST,
    "unauthorized": status.HTTP_403_FORBIDDEN,
    "conflict": status.HTTP_409_CONFLICT,
    "already_processed": status.HTTP_409_CONFLICT,
    "settlement_error": status.HTTP_502_BAD_GATEWAY,
}


def error_body(exc: MarketplaceError) -> dict:
    body = {"detail": exc.message, "error": type(exc).__name__, "kind": exc.kind}
    # Offending URLs etc. are useful to the client
    if exc.details:
        body["details"] = {k: v for k, v in exc.details.items() if isinstance(v, (str, int, list))}
    return body


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    return JSONResponse(status_code=status_code, content=error_body(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
