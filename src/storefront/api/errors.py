"""Exception handlers that render domain errors as JSON responses.

Every failure body has the same shape, ``{"success": false, "message": ...,
"errors": {...}}``, plus whatever context lets the client recover: the
stock still available, the wallet balance, or the current and attempted
states of a refused transition.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError

from storefront.errors import (
    ConcurrencyConflict,
    ExternalServiceError,
    InsufficientFunds,
    InsufficientStock,
    InvalidTransition,
)

logger = structlog.get_logger(__name__)


def _first_message(messages):
    if isinstance(messages, dict):
        for value in messages.values():
            if isinstance(value, list | tuple) and value:
                return str(value[0])
            if value:
                return str(value)
    if isinstance(messages, list | tuple) and messages:
        return str(messages[0])
    return str(messages)


def _body(message, errors=None, **extra):
    return {"success": False, "message": message, "errors": errors or {}, **extra}


def _validation_body(exc):
    messages = getattr(exc, "messages", None) or {}
    return _body(_first_message(messages), messages if isinstance(messages, dict) else {"_entity": [str(messages)]})


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content=_validation_body(exc))


async def insufficient_stock_handler(request: Request, exc: InsufficientStock) -> JSONResponse:
    body = _validation_body(exc)
    body.update(variant_id=exc.variant_id, requested=exc.requested, available=exc.available)
    return JSONResponse(status_code=400, content=body)


async def insufficient_funds_handler(request: Request, exc: InsufficientFunds) -> JSONResponse:
    body = _validation_body(exc)
    body.update(balance=exc.balance, required=exc.required, shortfall=exc.shortfall)
    return JSONResponse(status_code=400, content=body)


async def invalid_transition_handler(request: Request, exc: InvalidTransition) -> JSONResponse:
    body = _validation_body(exc)
    body.update(current=exc.current, attempted=exc.attempted)
    return JSONResponse(status_code=409, content=body)


async def not_found_handler(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    messages = getattr(exc, "messages", None) or str(exc)
    return JSONResponse(status_code=404, content=_body(_first_message(messages)))


async def conflict_handler(request: Request, exc: ConcurrencyConflict) -> JSONResponse:
    logger.warning("Concurrent modification rejected", path=request.url.path)
    return JSONResponse(status_code=409, content=_body(exc.message, retryable=True))


async def external_service_handler(request: Request, exc: ExternalServiceError) -> JSONResponse:
    logger.error("External service failure", service=exc.service, error=exc.message, path=request.url.path)
    return JSONResponse(
        status_code=503,
        content=_body(f"{exc.service} is unavailable: {exc.message}", retryable=exc.retryable),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(InsufficientStock, insufficient_stock_handler)
    app.add_exception_handler(InsufficientFunds, insufficient_funds_handler)
    app.add_exception_handler(InvalidTransition, invalid_transition_handler)
    app.add_exception_handler(ObjectNotFoundError, not_found_handler)
    app.add_exception_handler(ConcurrencyConflict, conflict_handler)
    app.add_exception_handler(ExternalServiceError, external_service_handler)
