"""
Order queries: listing and retrieval filtered by who is asking.

Role -> scope:
    client        orders they placed
    restaurateur  orders for restaurants they own
    deliverer     orders assigned to them, plus the unassigned pool (preparating / waitingDelivery)
    anyone else   all orders (admin, developer, commercial, technician)
"""
from typing import Literal

from orderflow.errors import Forbidden, NotFound, ValidationError
from orderflow.identity import Actor
from orderflow.models import Order
from orderflow.order_state import VALID_TRANSITIONS
from orderflow.pagination import Pagination
from orderflow.store import ClientScope, DelivererScope, OrderStore, RestaurantScope, Scope, UnrestrictedScope

DelivererFilter = Literal["me", "none"]


def scope_for(actor: Actor, deliverer_filter: DelivererFilter | None = None) -> Scope:
    """deliverer_filter narrows a deliverer's view; it is ignored for other roles."""
    if actor.role == "client":
        return ClientScope(client_id=actor.id)
    if actor.role == "restaurateur":
        return RestaurantScope(owner_id=actor.id)
    if actor.role == "deliverer":
        return DelivererScope(deliverer_id=actor.id, which=deliverer_filter or "any")
    return UnrestrictedScope()


def _status_filter(statuses) -> frozenset[str] | None:
    if not statuses:
        return None
    unknown = set(statuses) - set(VALID_TRANSITIONS)
    if unknown:
        raise ValidationError(f"unknown status value(s): {', '.join(sorted(unknown))}")
    return frozenset(statuses)


class OrderQueryService:
    def __init__(self, store: OrderStore):
        self.store = store

    async def list(
        self,
        actor: Actor,
        pagination: Pagination,
        statuses: list[str] | None = None,
        deliverer_filter: DelivererFilter | None = None,
    ) -> tuple[int, list[Order]]:
        """Returns (total matching, requested page)."""
        scope = scope_for(actor, deliverer_filter)
        status_filter = _status_filter(statuses)
        count = await self.store.count(scope, status_filter)
        page = await self.store.find(scope, status_filter, skip=pagination.skip, size=pagination.size)
        return count, page

    async def get_one(self, actor: Actor, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if order is None:
            raise NotFound(f"order {order_id} not found")
        if not scope_for(actor).matches(order):
            raise Forbidden("not allowed to view this order")
        return order
