"""
Exception handlers - render business errors with their specific reason
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

from pointsmall.core.exceptions import MallError

logger = logging.getLogger(__name__)


async def mall_error_handler(request: Request, exc: MallError) -> JSONResponse:
    headers = None
    if exc.retryable:
        headers = {"Retry-After": "1"}
        logger.warning(f"{request.method} {request.url.path} contention: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.to_dict()},
        headers=headers
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MallError, mall_error_handler)
