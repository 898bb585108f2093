"""
Test role-scoped API calls made through the cached session.
"""

import httpx
import pytest

from client import StoreRatingClient
from schemas import Role, SessionUser
from session import MemorySessionStorage, Session, SessionCache, SessionIssuer
from tests.conftest import PASSWORD

STORE = {"name": "Corner Bakery and Coffee House", "email": "bakery@example.com", "address": "5 Baker Street"}


async def logged_in(api, cache, make_user, role):
    make_user(role)
    await SessionIssuer(api, cache).login(f"{role.value}@example.com", PASSWORD)
    return StoreRatingClient(api, cache)


@pytest.mark.asyncio
async def test_calls_need_a_session(api, cache):
    result = await StoreRatingClient(api, cache).get_admin_users()
    assert result.error == "Not authenticated"


@pytest.mark.asyncio
async def test_admin_lists_users(api, cache, make_user):
    make_user(Role.USER)
    client = await logged_in(api, cache, make_user, Role.ADMIN)

    result = await client.get_admin_users(role="user")

    assert result.ok
    assert [u.email for u in result.data] == ["user@example.com"]


@pytest.mark.asyncio
async def test_user_cannot_list_admin_users(api, cache, make_user):
    client = await logged_in(api, cache, make_user, Role.USER)
    result = await client.get_admin_users()
    assert result.error == "Insufficient permissions"


@pytest.mark.asyncio
async def test_owner_creates_store_and_user_rates_it(api, cache, make_user):
    owner_client = await logged_in(api, cache, make_user, Role.OWNER)
    created = await owner_client.create_store(**STORE)
    assert created.ok
    assert created.data.owner_id == cache.get().user.id

    user_cache = SessionCache(MemorySessionStorage())
    user_cache.hydrate()
    user_client = await logged_in(api, user_cache, make_user, Role.USER)

    rated = await user_client.add_rating(created.data.id, 4, "Nice bread")
    assert rated.ok
    assert rated.data.rating == 4

    stores = await user_client.list_stores(name="bakery")
    assert [(s.name, s.my_rating, s.average_rating) for s in stores.data] == [(STORE["name"], 4, 4.0)]


@pytest.mark.asyncio
async def test_out_of_range_rating_never_reaches_server(cache):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    cache.claim_writer().write(
        Session(user=SessionUser(id="1", name="Someone", email="u@example.com", role=Role.USER), token="t")
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver") as http:
        result = await StoreRatingClient(http, cache).add_rating("64b000000000000000000009", 6)

    assert result.error.startswith("rating:")
    assert requests == []


@pytest.mark.asyncio
async def test_non_json_success_body_is_reported_as_error(cache):
    cache.claim_writer().write(
        Session(user=SessionUser(id="1", name="Someone", email="u@example.com", role=Role.USER), token="t")
    )

    def handler(request):
        return httpx.Response(200, text="<html>proxy page</html>")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver") as http:
        result = await StoreRatingClient(http, cache).list_stores()

    assert result.data is None
    assert result.error == "Failed to fetch stores"
