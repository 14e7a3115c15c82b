from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from pipeline.io.config import load_app_config
from processes.allocator.adapter import CachedAllocator, build_allocator
from processes.allocator.types import AllocationError, ErrorCodes
from processes.api.models import (
    AllocationRecord,
    CalculateResponse,
    ErrorResponse,
    HealthResponse,
    RecentResponse,
)

API_VERSION = "0.1.0"
DEFAULT_CORS_ORIGINS = ["http://localhost:3000"]

logger = logging.getLogger("processes.api")

_ERRORS: dict[ErrorCodes, tuple[int, str]] = {
    ErrorCodes.INVALID_QUANTITY: (400, "invalid_quantity"),
    ErrorCodes.NO_PACK_SIZES: (400, "no_pack_sizes"),
    ErrorCodes.STORAGE_NOT_CONFIGURED: (500, "storage_not_configured"),
}

_build_lock = threading.Lock()


def _enter(endpoint: str, **fields: Any) -> float:
    logger.info(json.dumps({"event": "api_enter", "endpoint": endpoint, **fields}))
    return time.time()


def _exit(endpoint: str, t0: float, status: int = 200, **fields: Any) -> None:
    dt = time.time() - t0
    event = {"event": "api_exit", "endpoint": endpoint, "status": status, "dt_s": round(dt, 6)}
    logger.info(json.dumps({**event, **fields}))


def _error(response: Response, e: AllocationError, endpoint: str, t0: float) -> ErrorResponse:
    status, error = _ERRORS.get(e.code, (500, "internal_error"))
    response.status_code = status
    logger.warning(
        json.dumps(
            {"event": "api_error", "endpoint": endpoint, "code": e.code.value, "error": e.message}
        )
    )
    _exit(endpoint, t0, status=status, code=e.code.value)
    return ErrorResponse(error=error, detail=e.user_message)


def get_allocator(request: Request) -> CachedAllocator:
    """Allocator bound to the app; built from configuration on first use."""
    state = request.app.state
    if state.allocator is None:
        with _build_lock:
            if state.allocator is None:
                state.allocator = build_allocator(load_app_config())
    return state.allocator


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    if app.state.allocator is not None:
        app.state.allocator.close()


def create_app(
    allocator: CachedAllocator | None = None,
    cors_origins: Sequence[str] | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Pack Allocation API",
        version=API_VERSION,
        description="Calculates the minimal-fill pack distribution for an order quantity.",
        lifespan=_lifespan,
    )
    app.state.allocator = allocator
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins if cors_origins is not None else DEFAULT_CORS_ORIGINS),
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/health", response_model=HealthResponse, tags=["health"])  # type: ignore[misc]
    def health() -> HealthResponse:
        t0 = _enter("/health")
        out = HealthResponse(ok=True, version=API_VERSION, time=datetime.now(UTC).isoformat())
        _exit("/health", t0)
        return out

    @app.get(
        "/calculate",
        response_model=CalculateResponse | ErrorResponse,
        responses={400: {"model": ErrorResponse}},
        tags=["packs"],
    )  # type: ignore[misc]
    def calculate(
        response: Response,
        quantity: str | None = None,
        allocator: CachedAllocator = Depends(get_allocator),
    ) -> CalculateResponse | ErrorResponse:
        """Calculate the pack distribution for ``quantity``."""
        t0 = _enter("/calculate", quantity=quantity)
        if quantity is None or not quantity.strip():
            response.status_code = 400
            _exit("/calculate", t0, status=400, error="invalid_quantity")
            return ErrorResponse(error="invalid_quantity", detail="quantity is required")
        try:
            qty = int(quantity.strip())
        except ValueError:
            response.status_code = 400
            _exit("/calculate", t0, status=400, error="invalid_quantity")
            return ErrorResponse(
                error="invalid_quantity", detail=f"quantity must be an integer, got {quantity!r}"
            )
        try:
            result = allocator.calculate(qty)
        except AllocationError as e:
            return _error(response, e, "/calculate", t0)
        out = CalculateResponse(
            packs={str(size): count for size, count in result.packs.items()},
            total=result.total,
        )
        _exit("/calculate", t0, quantity=qty, total=result.total)
        return out

    @app.get(
        "/recent",
        response_model=RecentResponse | ErrorResponse,
        responses={500: {"model": ErrorResponse}},
        tags=["packs"],
    )  # type: ignore[misc]
    def recent(
        response: Response,
        limit: int = 10,
        allocator: CachedAllocator = Depends(get_allocator),
    ) -> RecentResponse | ErrorResponse:
        """Most recent stored allocations, newest first."""
        t0 = _enter("/recent", limit=limit)
        try:
            rows = allocator.recent(limit)
        except AllocationError as e:
            return _error(response, e, "/recent", t0)
        out = RecentResponse(
            allocations=[AllocationRecord.model_validate(r.to_dict()) for r in rows]
        )
        _exit("/recent", t0, count=len(rows))
        return out

    return app


app = create_app()
