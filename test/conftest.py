# test/conftest.py
"""
Fakes for the order store and the notification bus, plus actor/draft builders.
InMemoryOrderStore honours the same contract as PostgresOrderStore: conditional_update checks the
expected predicate and applies the delta with no await in between, so it is atomic on the loop.
get() yields to the loop first so concurrent operations interleave between read and write.
"""
from __future__ import annotations

import asyncio
from typing import Any

import pytest

from orderflow.engine import OrderLifecycleEngine
from orderflow.identity import Actor
from orderflow.models import Order
from orderflow.notifications import Notification
from orderflow.notifier import NotificationDispatcher
from orderflow.queries import OrderQueryService
from orderflow.store import Delta, Expected, Scope


class InMemoryOrderStore:
    def __init__(self) -> None:
        self.documents: dict[str, dict] = {}
        self.history: dict[str, list[str]] = {}  # order_id -> observed statuses, in commit order

    def _record(self, document: dict) -> None:
        self.history.setdefault(document["id"], []).append(document["status"])

    async def get(self, order_id: str) -> Order | None:
        await asyncio.sleep(0)
        doc = self.documents.get(order_id)
        return Order.model_validate(doc) if doc is not None else None

    async def insert(self, order: Order) -> Order:
        doc = order.to_document()
        self.documents[order.id] = doc
        self._record(doc)
        return Order.model_validate(doc)

    async def conditional_update(self, order_id: str, expected: Expected, delta: Delta) -> Order | None:
        await asyncio.sleep(0)
        doc = self.documents.get(order_id)
        if doc is None or not expected.matches(Order.model_validate(doc)):
            return None
        doc = {**doc, **delta.to_document()}
        self.documents[order_id] = doc
        if delta.status is not None:
            self._record(doc)
        return Order.model_validate(doc)

    async def update_fields(self, order_id: str, fields: dict) -> Order | None:
        doc = self.documents.get(order_id)
        if doc is None:
            return None
        doc = {**doc, **fields}
        self.documents[order_id] = doc
        return Order.model_validate(doc)

    def _matching(self, scope: Scope, statuses: frozenset[str] | None) -> list[Order]:
        orders = [Order.model_validate(d) for d in reversed(list(self.documents.values()))]
        return [o for o in orders if scope.matches(o) and (statuses is None or o.status in statuses)]

    async def find(self, scope, statuses=None, skip: int = 0, size: int | None = None) -> list[Order]:
        matching = self._matching(scope, statuses)
        end = None if size is None else skip + size
        return matching[skip:end]

    async def count(self, scope, statuses=None) -> int:
        return len(self._matching(scope, statuses))


class TimingOutStore(InMemoryOrderStore):
    async def get(self, order_id: str) -> Order | None:
        raise asyncio.TimeoutError()


class TimingOutWriteStore(InMemoryOrderStore):
    """Reads succeed, every write times out."""

    async def insert(self, order: Order) -> Order:
        raise asyncio.TimeoutError()

    async def conditional_update(self, order_id: str, expected: Expected, delta: Delta) -> Order | None:
        raise asyncio.TimeoutError()


class RecordingNotifier:
    def __init__(self, fail_for: set[str] | None = None, delay: float = 0.0) -> None:
        self.published: list[tuple[str | None, str, Notification]] = []
        self.role_published: list[tuple[str | None, str, Notification]] = []
        self.fail_for = fail_for or set()
        self.delay = delay

    async def publish(self, topic: str | None, user_id: str, body: Notification) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if user_id in self.fail_for:
            raise ConnectionError(f"bus down for {user_id}")
        self.published.append((topic, user_id, body))

    async def publish_to_role(self, topic: str | None, role: str, body: Notification) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if role in self.fail_for:
            raise ConnectionError(f"bus down for role {role}")
        self.role_published.append((topic, role, body))

    def targets(self) -> list[str]:
        return [user_id for _, user_id, _ in self.published]


def make_actor(user_id: str, role: str, **extra: Any) -> Actor:
    return Actor(
        id=user_id,
        role=role,
        firstname=extra.get("firstname", user_id.capitalize()),
        lastname=extra.get("lastname", "Test"),
        email=extra.get("email", f"{user_id}@example.com"),
        phone=extra.get("phone", "0600000000"),
    )


def make_draft(owner_id: str = "owner-1", **overrides: Any) -> dict:
    draft = {
        "restaurant": {
            "id": "resto-1",
            "owner": {
                "id": owner_id,
                "firstname": "Olivia",
                "lastname": "Owner",
                "email": "olivia@example.com",
                "phone": "0611111111",
                "role": "restaurateur",
            },
            "name": "Chez Olivia",
            "description": "Bistro",
            "address": "1 rue des Lilas",
            "position": {"lon": 2.35, "lat": 48.85},
            "openingHours": [{"from": "2026-01-01T11:00:00", "to": "2026-01-01T22:00:00"}],
            "types": ["french"],
            "isClosed": False,
        },
        "products": [
            {"id": "p-1", "name": "Croque", "price": 8.5, "description": "", "image": "", "restaurant": "resto-1"},
        ],
        "menus": [],
        "price": 8.5,
        "deliveryPrice": 2.5,
        "commissionPrice": 1.0,
        "address": "10 avenue Foch",
        "position": {"lon": 2.29, "lat": 48.87},
        "comment": "Ring twice",
    }
    draft.update(overrides)
    return draft


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier) -> NotificationDispatcher:
    return NotificationDispatcher(notifier, timeout_seconds=0.5)


@pytest.fixture
def engine(store, dispatcher) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(store, dispatcher)


@pytest.fixture
def queries(store) -> OrderQueryService:
    return OrderQueryService(store)


@pytest.fixture
def client_actor() -> Actor:
    return make_actor("client-1", "client")


@pytest.fixture
def owner() -> Actor:
    return make_actor("owner-1", "restaurateur")


@pytest.fixture
def deliverer() -> Actor:
    return make_actor("deliv-1", "deliverer", firstname="Dan", lastname="Driver")


@pytest.fixture
def other_deliverer() -> Actor:
    return make_actor("deliv-2", "deliverer")


@pytest.fixture
def admin() -> Actor:
    return make_actor("admin-1", "admin")
