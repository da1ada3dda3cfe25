"""Map domain errors onto HTTP responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers as register_protean_handlers

from marketplace.shared.errors import MarketplaceError

logger = structlog.get_logger(__name__)


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    logger.info(
        "Request rejected",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """Protean's handlers for plain validation and not-found errors, plus typed marketplace errors."""
    register_protean_handlers(app)
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
