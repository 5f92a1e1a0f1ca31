from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse

from orderflow.engine import OrderLifecycleEngine
from orderflow.identity import Actor, get_actor
from orderflow.models import OrderDraft
from orderflow.pagination import Pagination, paginate
from orderflow.queries import OrderQueryService

router = APIRouter(prefix="/api/orders", tags=["orders"])


def get_engine(request: Request) -> OrderLifecycleEngine:
    return request.app.state.engine


def get_query_service(request: Request) -> OrderQueryService:
    return request.app.state.queries


@router.get("")
async def list_orders(
    actor: Actor = Depends(get_actor),
    pagination: Pagination = Depends(paginate),
    status: list[str] | None = Query(default=None, description="Repeatable status filter"),
    deliverer: Literal["me", "none"] | None = Query(default=None, description="Deliverers only: my orders or the pool"),
    queries: OrderQueryService = Depends(get_query_service),
) -> JSONResponse:
    count, items = await queries.list(actor, pagination, statuses=status, deliverer_filter=deliverer)
    return JSONResponse(
        status_code=200,
        content={
            "count": count,
            "page": pagination.page,
            "size": pagination.size,
            "items": [o.to_document() for o in items],
        },
    )


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    queries: OrderQueryService = Depends(get_query_service),
) -> JSONResponse:
    order = await queries.get_one(actor, order_id)
    return JSONResponse(status_code=200, content=order.to_document())


@router.post("")
async def submit_order(
    draft: OrderDraft,
    actor: Actor = Depends(get_actor),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> JSONResponse:
    """Place an order. Created in status validating; the restaurant owner is notified."""
    order = await engine.submit(actor, draft)
    return JSONResponse(status_code=201, content=order.to_document())


@router.patch("/{order_id}")
async def modify_order(
    order_id: str,
    patch: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> JSONResponse:
    """Administrative partial update; bypasses the lifecycle."""
    order = await engine.modify(actor, order_id, patch)
    return JSONResponse(status_code=200, content=order.to_document())


@router.post("/{order_id}/accept")
async def accept_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> JSONResponse:
    order = await engine.accept(actor, order_id)
    return JSONResponse(status_code=200, content=order.to_document())


@router.post("/{order_id}/decline")
async def decline_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> JSONResponse:
    order = await engine.decline(actor, order_id)
    return JSONResponse(status_code=200, content=order.to_document())


@router.post("/{order_id}/ready")
async def ready_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> JSONResponse:
    order = await engine.ready(actor, order_id)
    return JSONResponse(status_code=200, content=order.to_document())


@router.post("/{order_id}/assign")
async def assign_deliverer(
    order_id: str,
    actor: Actor = Depends(get_actor),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> JSONResponse:
    """Calling deliverer claims the order. Fails once any deliverer is set."""
    order = await engine.assign_deliverer(actor, order_id)
    return JSONResponse(status_code=200, content=order.to_document())


@router.post("/{order_id}/deliver")
async def deliver_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> JSONResponse:
    """Start the delivery; the response carries the hand-off validationCode."""
    order = await engine.begin_delivery(actor, order_id)
    return JSONResponse(status_code=200, content=order.to_document())


@router.post("/{order_id}/completed")
async def complete_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> JSONResponse:
    order = await engine.complete(actor, order_id)
    return JSONResponse(status_code=200, content=order.to_document())
