"""
Order lifecycle engine: guards, atomic transitions and notification fan-out.

Every operation evaluates its guards in the same order: existence -> authorization -> current status.
A caller without permission therefore never learns the order's status from the error.
The write itself is one conditional update carrying the same precondition, so a transition that
loses a race against a concurrent one fails with Conflict instead of overwriting it.
Notifications are composed from the committed record and dispatched without being awaited.
"""
import asyncio
import logging
import uuid
from typing import Any, Awaitable, TypeVar

from pydantic import ValidationError as PydanticValidationError

from orderflow import order_state
from orderflow.errors import Conflict, Forbidden, InvalidTransition, NotFound, OrderError, Unavailable, ValidationError
from orderflow.identity import Actor
from orderflow.metrics import order_transitions_rejected_total, order_transitions_total
from orderflow.models import Order, OrderDraft, OrderPatch
from orderflow.notifier import NotificationDispatcher
from orderflow.order_state import Transition
from orderflow.store import UNSET, Delta, Expected, OrderStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderLifecycleEngine:
    def __init__(self, store: OrderStore, dispatcher: NotificationDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    # -- store access ------------------------------------------------------

    async def _store_call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except (asyncio.TimeoutError, ConnectionError) as e:
            logger.error("Order store %s failed: %s", operation, e)
            raise Unavailable(f"order store unavailable ({operation})") from e

    async def _load(self, order_id: str) -> Order:
        order = await self._store_call("get", self.store.get(order_id))
        if order is None:
            raise NotFound(f"order {order_id} not found")
        return order

    def _committed(self, name: str, order: Order) -> Order:
        order_transitions_total.labels(transition=name).inc()
        logger.info("order_id=%s transition=%s status=%s", order.id, name, order.status)
        self.dispatcher.dispatch(name, order)
        return order

    def _rejected(self, name: str, order_id: str, e: OrderError) -> None:
        order_transitions_rejected_total.labels(transition=name, reason=e.kind).inc()
        logger.info("Rejected order_id=%s transition=%s reason=%s: %s", order_id, name, e.kind, e.detail)

    # -- guards ------------------------------------------------------------

    @staticmethod
    def _authorize(t: Transition, actor: Actor, order: Order) -> None:
        if t.guard == "owner":
            if actor.id != order.restaurant.owner.id:
                raise Forbidden(f"only the restaurant owner can {t.name} this order")
        elif t.guard == "any_deliverer":
            if actor.role != "deliverer":
                raise Forbidden(f"only a deliverer can {t.name} an order")
        elif t.guard == "assigned_deliverer":
            if order.deliverer is None or order.deliverer.id != actor.id:
                raise Forbidden(f"only the assigned deliverer can {t.name} this order")
        else:
            raise ValueError(f"unknown guard {t.guard!r}")
        if t.deliverer == "unset_or_actor" and order.deliverer is not None and order.deliverer.id != actor.id:
            raise Forbidden("order is assigned to another deliverer")

    @staticmethod
    def _check_status(t: Transition, order: Order) -> None:
        if t.to_state is not None:
            allowed = order_state.is_valid_transition(order.status, t.to_state)
        else:
            allowed = order.status in t.from_states
        if not allowed:
            raise InvalidTransition(
                f"cannot {t.name} an order in status {order.status}",
                current_state=order.status,
            )
        if t.deliverer == "unset" and order.deliverer is not None:
            raise InvalidTransition("order already has a deliverer", current_state=order.status)

    @staticmethod
    def _allowed_deliverers(t: Transition, actor: Actor) -> frozenset[str | None] | None:
        if t.deliverer == "unset":
            return frozenset({UNSET})
        if t.deliverer == "unset_or_actor":
            return frozenset({UNSET, actor.id})
        if t.deliverer == "actor":
            return frozenset({actor.id})
        return None

    @classmethod
    def _plan(cls, t: Transition, actor: Actor, order: Order) -> tuple[Expected, Delta]:
        """Write precondition and change for a transition that passed its guards."""
        expected = Expected(t.from_states, cls._allowed_deliverers(t, actor))
        delta = Delta(
            status=t.to_state,
            # an unassigned deliverer claims the order with this write
            deliverer=actor.snapshot() if t.claims_deliverer and order.deliverer is None else None,
            validation_code=order_state.generate_validation_code() if t.issues_code else None,
        )
        return expected, delta

    # -- transitions -------------------------------------------------------

    async def _transition(self, t: Transition, actor: Actor, order_id: str) -> Order:
        try:
            order = await self._load(order_id)
            self._authorize(t, actor, order)
            self._check_status(t, order)
            expected, delta = self._plan(t, actor, order)
            updated = await self._store_call(
                "conditional_update",
                self.store.conditional_update(order_id, expected, delta),
            )
            if updated is None:
                raise Conflict(f"order {order_id} changed concurrently, {t.name} not applied")
        except OrderError as e:
            self._rejected(t.name, order_id, e)
            raise
        return self._committed(t.name, updated)

    async def accept(self, actor: Actor, order_id: str) -> Order:
        return await self._transition(order_state.ACCEPT, actor, order_id)

    async def decline(self, actor: Actor, order_id: str) -> Order:
        return await self._transition(order_state.DECLINE, actor, order_id)

    async def ready(self, actor: Actor, order_id: str) -> Order:
        return await self._transition(order_state.READY, actor, order_id)

    async def assign_deliverer(self, actor: Actor, order_id: str) -> Order:
        return await self._transition(order_state.ASSIGN_DELIVERER, actor, order_id)

    async def begin_delivery(self, actor: Actor, order_id: str) -> Order:
        return await self._transition(order_state.BEGIN_DELIVERY, actor, order_id)

    async def complete(self, actor: Actor, order_id: str) -> Order:
        return await self._transition(order_state.COMPLETE, actor, order_id)

    # -- creation and administrative override ------------------------------

    async def submit(self, actor: Actor, draft: OrderDraft | dict[str, Any]) -> Order:
        """Create an order in the initial state on behalf of the calling client."""
        try:
            if actor.role != "client":
                raise Forbidden("only clients can place orders")
            try:
                if not isinstance(draft, OrderDraft):
                    draft = OrderDraft.model_validate(draft)
                order = Order.model_validate({
                    **draft.to_document(),
                    "id": uuid.uuid4().hex,
                    "status": order_state.INITIAL_STATE,
                    "client": actor.snapshot().to_document(),
                })
            except PydanticValidationError as e:
                raise ValidationError(str(e)) from e
            order = await self._store_call("insert", self.store.insert(order))
        except OrderError as e:
            self._rejected("submit", "-", e)
            raise
        return self._committed("submit", order)

    async def modify(self, actor: Actor, order_id: str, patch: OrderPatch | dict[str, Any]) -> Order:
        """Partial update outside the state machine. Administrative roles only."""
        try:
            order = await self._load(order_id)
            if not actor.is_admin:
                raise Forbidden("modifying an order requires an administrative role")
            try:
                if not isinstance(patch, OrderPatch):
                    patch = OrderPatch.model_validate(patch)
                changes = patch.changes()
                # the patched document must still be a valid order before anything is written
                Order.model_validate({**order.to_document(), **changes})
            except PydanticValidationError as e:
                raise ValidationError(str(e)) from e
            if not changes:
                return order
            updated = await self._store_call("update_fields", self.store.update_fields(order_id, changes))
            if updated is None:
                raise NotFound(f"order {order_id} not found")
        except OrderError as e:
            self._rejected("modify", order_id, e)
            raise
        logger.warning("Administrative override order_id=%s by user_id=%s fields=%s", order_id, actor.id, sorted(changes))
        return self._committed("modify", updated)
