"""
AI Trader — Global Exception Handlers

Structured error responses for the signal API. Validation failures are
classified by the input they concern (candles, trade mode, outcome labels,
training batches) so a caller can tell a bad label from a bad candle series
without parsing pydantic messages.

Every error body carries ``error``, ``status_code``, ``detail`` and
``request_id``; 422 bodies add ``errors``.
"""

from __future__ import annotations

import traceback
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

import structlog

from aitrader.models import TradeMode

log = structlog.get_logger(__name__)

LABEL_HINT = "bullish | bearish | neutral, or a number in [0, 1]"
MODE_HINT = " | ".join(m.value for m in TradeMode)

# Checked in order; the first category present in a request names its detail.
_CATEGORIES = (
    ("label", "Invalid outcome label"),
    ("mode", "Invalid trade mode"),
    ("samples", "Invalid training batch"),
    ("candles", "Invalid candle series"),
    ("timeframes", "Invalid candle series"),
    ("news", "Invalid news context"),
)


def _category(loc: tuple) -> Optional[str]:
    fields = [str(part) for part in loc if not isinstance(part, int)]
    if fields and fields[0] == "body":
        fields = fields[1:]
    if not fields:
        return None
    if fields[-1] in ("label", "mode"):
        return fields[-1]
    if fields[0] in ("samples", "candles", "timeframes", "news"):
        return fields[0]
    return None


def _field_error(err: dict) -> dict:
    loc = tuple(err.get("loc", ()))
    entry = {
        "field": ".".join(str(part) for part in loc),
        "message": err.get("msg", ""),
        "type": err.get("type", ""),
    }
    category = _category(loc)
    if category == "label":
        entry["hint"] = LABEL_HINT
    elif category == "mode":
        entry["hint"] = MODE_HINT
    elif category == "samples" and err.get("type") == "too_short":
        entry["hint"] = "at least one sample is required"
    return entry


def _detail(errors: list[tuple[Optional[str], dict]]) -> str:
    present = {category for category, _ in errors}
    for category, detail in _CATEGORIES:
        if category in present:
            return detail
    return "Validation error"


def _symbol(body: Any) -> Optional[str]:
    if isinstance(body, dict) and isinstance(body.get("symbol"), str):
        return body["symbol"] or None
    return None


def _engine_context() -> dict:
    from aitrader.routes import current_engine

    engine = current_engine()
    if engine is None:
        return {}
    return {
        "model_dimension": engine.store.model.dimension,
        "trained_samples": engine.store.model.trained_samples,
        "analyses": engine.store.analyses,
    }


def register_error_handlers(app: FastAPI) -> None:
    """Register the API's exception handlers on ``app``."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "status_code": exc.status_code,
                "detail": exc.detail,
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        request_id = getattr(request.state, "request_id", None)
        classified = [(_category(tuple(err.get("loc", ()))), err) for err in exc.errors()]
        errors = [_field_error(err) for _, err in classified]
        detail = _detail(classified)
        log.warning(
            "api.validation_error",
            path=str(request.url.path),
            detail=detail,
            symbol=_symbol(getattr(exc, "body", None)),
            fields=[e["field"] for e in errors],
            request_id=request_id,
        )
        return JSONResponse(
            status_code=422,
            content={
                "error": True,
                "status_code": 422,
                "detail": detail,
                "errors": errors,
                "request_id": request_id,
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        """Anything the engine did not absorb: 500 plus the learner state at failure."""
        request_id = getattr(request.state, "request_id", None)
        log.error(
            "api.unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
            traceback=traceback.format_exc(),
            request_id=request_id,
            **_engine_context(),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": True,
                "status_code": 500,
                "detail": "Internal server error",
                "request_id": request_id,
            },
        )
