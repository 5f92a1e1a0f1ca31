import asyncio

import pytest

from conftest import make_actor, make_draft
from orderflow.errors import Forbidden, NotFound, ValidationError
from orderflow.pagination import Pagination
from orderflow.queries import scope_for
from orderflow.store import ClientScope, DelivererScope, RestaurantScope, UnrestrictedScope

PAGE = Pagination(skip=0, size=50)


def run(coro):
    return asyncio.run(coro)


@pytest.mark.parametrize(
    "role, expected",
    [
        ("client", ClientScope(client_id="u1")),
        ("restaurateur", RestaurantScope(owner_id="u1")),
        ("deliverer", DelivererScope(deliverer_id="u1", which="any")),
        ("admin", UnrestrictedScope()),
        ("developer", UnrestrictedScope()),
        ("commercial", UnrestrictedScope()),
        ("technician", UnrestrictedScope()),
    ],
)
def test_scope_for_every_role(role, expected):
    assert scope_for(make_actor("u1", role)) == expected


def test_deliverer_filter_only_applies_to_deliverers():
    assert scope_for(make_actor("u1", "deliverer"), "none") == DelivererScope(deliverer_id="u1", which="none")
    assert scope_for(make_actor("u1", "client"), "none") == ClientScope(client_id="u1")


def test_clients_and_owners_see_only_their_orders(engine, queries, client_actor, owner):
    other_client = make_actor("client-2", "client")
    other_owner = make_actor("owner-2", "restaurateur")

    async def scenario():
        mine = await engine.submit(client_actor, make_draft())
        theirs = await engine.submit(other_client, make_draft(owner_id="owner-2"))
        assert await queries.list(client_actor, PAGE) == (1, [mine])
        assert await queries.list(other_client, PAGE) == (1, [theirs])
        assert await queries.list(owner, PAGE) == (1, [mine])
        assert await queries.list(other_owner, PAGE) == (1, [theirs])
        count, _ = await queries.list(make_actor("com-1", "commercial"), PAGE)
        assert count == 2

    run(scenario())


def test_pool_visibility(engine, queries, client_actor, owner, deliverer, other_deliverer):
    async def scenario():
        order = await engine.submit(client_actor, make_draft())
        # validating orders are not in the pool
        assert await queries.list(deliverer, PAGE) == (0, [])
        await engine.accept(owner, order.id)
        await engine.ready(owner, order.id)

        for d in (deliverer, other_deliverer):
            count, items = await queries.list(d, PAGE)
            assert count == 1 and items[0].id == order.id
        count, _ = await queries.list(deliverer, PAGE, deliverer_filter="none")
        assert count == 1

        await engine.assign_deliverer(deliverer, order.id)
        assert (await queries.list(deliverer, PAGE, deliverer_filter="none"))[0] == 0
        assert (await queries.list(deliverer, PAGE, deliverer_filter="me"))[0] == 1
        assert (await queries.list(deliverer, PAGE))[0] == 1
        assert (await queries.list(other_deliverer, PAGE))[0] == 0

    run(scenario())


def test_status_filter(engine, queries, client_actor, owner):
    async def scenario():
        a = await engine.submit(client_actor, make_draft())
        b = await engine.submit(client_actor, make_draft())
        await engine.accept(owner, a.id)
        count, items = await queries.list(client_actor, PAGE, statuses=["preparating"])
        assert count == 1 and items[0].id == a.id
        count, _ = await queries.list(client_actor, PAGE, statuses=["preparating", "validating"])
        assert count == 2
        with pytest.raises(ValidationError):
            await queries.list(client_actor, PAGE, statuses=["shipped"])
        return b

    run(scenario())


def test_pagination_returns_total_and_page(engine, queries, client_actor):
    async def scenario():
        for _ in range(5):
            await engine.submit(client_actor, make_draft())
        count, items = await queries.list(client_actor, Pagination(skip=2, size=2))
        assert count == 5
        assert len(items) == 2
        count, items = await queries.list(client_actor, Pagination(skip=4, size=2))
        assert count == 5
        assert len(items) == 1

    run(scenario())


def test_get_one_applies_ownership(engine, queries, client_actor, owner, deliverer, admin):
    async def scenario():
        order = await engine.submit(client_actor, make_draft())
        assert (await queries.get_one(client_actor, order.id)).id == order.id
        assert (await queries.get_one(owner, order.id)).id == order.id
        assert (await queries.get_one(admin, order.id)).id == order.id
        for actor in (make_actor("client-2", "client"), make_actor("owner-2", "restaurateur"), deliverer):
            with pytest.raises(Forbidden):
                await queries.get_one(actor, order.id)
        with pytest.raises(NotFound):
            await queries.get_one(client_actor, "missing")

        await engine.accept(owner, order.id)
        # in the pool now: any deliverer may look at it
        assert (await queries.get_one(deliverer, order.id)).id == order.id

    run(scenario())
