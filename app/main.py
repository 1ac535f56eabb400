import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.errors import VerificationError
from app.core.logging import configure_logging
from app.core.middleware import RequestIdMiddleware
from app.api.v1.router import v1_router

logger = logging.getLogger(__name__)


async def verification_error_handler(request: Request, exc: VerificationError) -> JSONResponse:
    """
    Last resort for domain errors a router did not translate (in practice
    StorageFailure). The body carries the request id, never a traceback.
    """
    rid = getattr(request.state, "request_id", None)
    if exc.status_code >= 500:
        logger.error(
            "request failed: %s",
            exc.message,
            extra={"request_id": rid, "path": request.url.path},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "request_id": rid},
    )


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
    )
    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    app.add_exception_handler(VerificationError, verification_error_handler)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
