"""
Order Store boundary: the contract the engine and query service rely on, the conditional-update
predicate/delta pair, and the role scopes used to filter queries.

Scopes form a closed union. Each variant knows how to match a single order (used for getOne and by
in-process stores); the Postgres store translates each variant to SQL.
"""
from dataclasses import dataclass, field
from typing import Literal, Protocol, Union

from orderflow.models import Order, UserSnapshot
from orderflow.order_state import ASSIGNABLE_STATES

UNSET = None  # deliverer not yet assigned


@dataclass(frozen=True)
class Expected:
    """What the stored record must look like for a conditional update to apply.

    statuses: the record's status must be one of these.
    deliverer_ids: when given, the record's deliverer id must be one of these (UNSET = no deliverer).
    """
    statuses: frozenset[str]
    deliverer_ids: frozenset[str | None] | None = None

    def matches(self, order: Order) -> bool:
        if order.status not in self.statuses:
            return False
        if self.deliverer_ids is None:
            return True
        current = order.deliverer.id if order.deliverer else UNSET
        return current in self.deliverer_ids


@dataclass(frozen=True)
class Delta:
    status: str | None = None
    deliverer: UserSnapshot | None = None
    validation_code: int | None = None

    def to_document(self) -> dict:
        doc: dict = {}
        if self.status is not None:
            doc["status"] = self.status
        if self.deliverer is not None:
            doc["deliverer"] = self.deliverer.to_document()
        if self.validation_code is not None:
            doc["validationCode"] = self.validation_code
        return doc


@dataclass(frozen=True)
class ClientScope:
    client_id: str
    kind: Literal["client"] = "client"

    def matches(self, order: Order) -> bool:
        return order.client.id == self.client_id


@dataclass(frozen=True)
class RestaurantScope:
    owner_id: str
    kind: Literal["restaurant"] = "restaurant"

    def matches(self, order: Order) -> bool:
        return order.restaurant.owner.id == self.owner_id


@dataclass(frozen=True)
class DelivererScope:
    """Orders assigned to the deliverer and/or the unassigned pool.

    which: "any" = mine or pool, "me" = mine only, "none" = pool only.
    """
    deliverer_id: str
    which: Literal["any", "me", "none"] = "any"
    pool_statuses: frozenset[str] = field(default=ASSIGNABLE_STATES)
    kind: Literal["deliverer"] = "deliverer"

    def matches(self, order: Order) -> bool:
        mine = order.deliverer is not None and order.deliverer.id == self.deliverer_id
        in_pool = order.deliverer is None and order.status in self.pool_statuses
        if self.which == "me":
            return mine
        if self.which == "none":
            return in_pool
        return mine or in_pool


@dataclass(frozen=True)
class UnrestrictedScope:
    kind: Literal["all"] = "all"

    def matches(self, order: Order) -> bool:
        return True


Scope = Union[ClientScope, RestaurantScope, DelivererScope, UnrestrictedScope]


class OrderStore(Protocol):
    async def get(self, order_id: str) -> Order | None: ...

    async def insert(self, order: Order) -> Order: ...

    async def conditional_update(self, order_id: str, expected: Expected, delta: Delta) -> Order | None:
        """Apply delta only if the stored record matches expected. Returns the updated order, or None."""
        ...

    async def update_fields(self, order_id: str, fields: dict) -> Order | None: ...

    async def find(
        self,
        scope: Scope,
        statuses: frozenset[str] | None = None,
        skip: int = 0,
        size: int | None = None,
    ) -> list[Order]: ...

    async def count(self, scope: Scope, statuses: frozenset[str] | None = None) -> int: ...
