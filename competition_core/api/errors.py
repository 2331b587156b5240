"""
Exception handlers mapping engine errors to JSON responses
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from competition_core.core.errors import CompetitionError, ReconciliationInProgress

logger = logging.getLogger(__name__)


async def competition_error_handler(request: Request, exc: CompetitionError) -> JSONResponse:
    headers = None
    if isinstance(exc, ReconciliationInProgress):
        headers = {"Retry-After": str(exc.retry_after)}

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc.message}")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CompetitionError, competition_error_handler)
