"""
Translate domain errors into JSON responses.

Body shape for every handled error:
    {"error": {"kind": "<ErrorCode>", "message": "..."}}
"""

import math

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from boxoffice.core.exceptions import DomainError, ErrorCode, LockTimeout
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    headers = None
    if isinstance(exc, LockTimeout):
        headers = {"Retry-After": str(max(1, math.ceil(exc.timeout)))}

    log = logger.error if exc.status_code >= 500 else logger.warning
    log("domain_error", kind=exc.code.value, message=exc.message, status_code=exc.status_code)

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.to_dict()},
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "kind": ErrorCode.VALIDATION_FAILED.value,
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
