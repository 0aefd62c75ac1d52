"""
Kitchen Request Surface - FastAPI Application
==============================================

HTTP front end for the ChefFlow kitchen bridge. Every route delegates to a
KitchenBridge held on ``app.state.bridge``; nothing here talks to the engine
or the store directly.

Endpoints:
- **POST /add-order:** Persist a new order and enqueue it.
- **POST /cancel-order:** Cancel an order by id.
- **POST /complete-selected-order:** Complete an order by id.
- **POST /complete-order:** Complete the order at the head of the queue.
- **GET /live-queue:** Current engine queue snapshot.
- **GET /api/analytics:** Order stats for today, week or month.
- **GET /all-orders:** Most recent orders of any status.
- **GET /health:** Engine, observer and channel status.

Usage:
    chefflow --port 3000

    or, with settings from config/base.yaml:
    uvicorn web.main:create_app --factory --port 3000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config.settings_schema import load_validated_settings
from core.exceptions import (
    ChefFlowError,
    DuplicateOrderError,
    EmptyQueueError,
    InvalidTransitionError,
    NotFoundError,
    ProcessUnavailableError,
    TransportError,
    ValidationError,
    WriteError,
)
from kitchen.bridge import KitchenBridge, OrderIdRequest, OrderRequest, build_bridge

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = [
    (ValidationError, 400),
    (EmptyQueueError, 400),
    (NotFoundError, 404),
    (DuplicateOrderError, 409),
    (InvalidTransitionError, 409),
    (TransportError, 503),
    (ProcessUnavailableError, 503),
    (WriteError, 500),
]


def status_for_error(error: ChefFlowError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(error, cls):
            return status
    return 500


class QueueResponse(BaseModel):
    queue: list = Field(default_factory=list)


router = APIRouter()


def get_bridge(request: Request) -> KitchenBridge:
    return request.app.state.bridge


@router.post("/add-order", summary="Add a new order")
def add_order(body: OrderRequest, request: Request) -> Dict[str, Any]:
    result = get_bridge(request).submit_order(body)
    return {**result.to_dict(), "message": "Order added successfully"}


@router.post("/cancel-order", summary="Cancel an order by id")
def cancel_order(body: OrderIdRequest, request: Request) -> Dict[str, Any]:
    result = get_bridge(request).cancel_order(body.id)
    return {**result.to_dict(), "message": "Order cancelled"}


@router.post("/complete-selected-order", summary="Complete an order by id")
def complete_selected_order(body: OrderIdRequest, request: Request) -> Dict[str, Any]:
    result = get_bridge(request).complete_order(body.id)
    return {**result.to_dict(), "message": "Order completed"}


@router.post("/complete-order", summary="Complete the order at the head of the queue")
def complete_order(request: Request) -> Dict[str, Any]:
    result = get_bridge(request).complete_head()
    return {**result.to_dict(), "message": "Order completed"}


@router.get("/live-queue", summary="Current engine queue", response_model=QueueResponse)
def live_queue(request: Request) -> Dict[str, Any]:
    return {"queue": get_bridge(request).live_queue()}


@router.get("/api/analytics", summary="Order analytics for a period")
def analytics(request: Request, period: str = Query(default="today")) -> Dict[str, Any]:
    return get_bridge(request).analytics(period)


@router.get("/all-orders", summary="Most recent orders")
def all_orders(request: Request) -> Dict[str, Any]:
    return {"orders": get_bridge(request).recent_orders()}


@router.get("/health", summary="Bridge status")
def health(request: Request) -> Dict[str, Any]:
    return get_bridge(request).status()


async def _chefflow_error_handler(request: Request, exc: ChefFlowError) -> JSONResponse:
    status = status_for_error(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        status_code=status,
        content={"error": exc.message, "code": exc.error_code, "context": exc.context},
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"error": "Missing or invalid fields", "code": ValidationError.error_code, "context": {"errors": errors}},
    )


def create_app(bridge: Optional[KitchenBridge] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        bridge: An already-started bridge. When omitted, one is built from
            settings, started on application startup and shut down on exit.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if bridge is not None:
            app.state.bridge = bridge
            yield
            return

        owned = build_bridge(load_validated_settings())
        owned.start()
        app.state.bridge = owned
        try:
            yield
        finally:
            owned.shutdown()

    app = FastAPI(
        title="ChefFlow Kitchen Bridge API",
        description="Order intake and live queue for the kitchen queue engine.",
        version="2.0.0",
        lifespan=lifespan,
    )
    if bridge is not None:
        app.state.bridge = bridge
    app.include_router(router)
    app.add_exception_handler(ChefFlowError, _chefflow_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    return app

