"""
Installs the application exception handlers on a FastAPI app so that
service-layer exceptions reach clients as mapped HTTP responses.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

from .exceptions import BaseAppException, map_exception_to_http_exception

logger = logging.getLogger(__name__)


async def app_exception_handler(request: Request, exc: BaseAppException) -> JSONResponse:
    http_exc = map_exception_to_http_exception(exc)
    logger.warning(f"Application exception: {exc.message}", extra={
        "exception_type": type(exc).__name__,
        "path": request.url.path,
        "method": request.method
    })
    return JSONResponse(
        status_code=http_exc.status_code,
        content={"isError": True, **http_exc.detail},
        headers=http_exc.headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAppException, app_exception_handler)
