"""
Test the session cache and the session issuer against the API.
"""

import asyncio
import json

import httpx
import pytest

from schemas import Role, SessionUser
from session import (
    LOGIN_FAILED,
    LOGIN_SUPERSEDED,
    TOKEN_KEY,
    USER_KEY,
    FileSessionStorage,
    MemorySessionStorage,
    Session,
    SessionCache,
    SessionIssuer,
    api_client,
    open_session_cache,
)
from tests.conftest import NAMES, PASSWORD

STORED_USER = '{"id": "64b000000000000000000001", "name": "Someone", "email": "a@example.com", "role": "owner"}'


def login_body(email, role="user", user_id="64b000000000000000000001"):
    return {"user": {"id": user_id, "name": "Someone", "email": email, "role": role}, "token": f"token-{email}"}


def mock_http(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")


# Session cache

def test_cache_is_loading_until_hydrated():
    cache = SessionCache(MemorySessionStorage())
    assert cache.is_loading()
    assert cache.get() is None
    cache.hydrate()
    assert not cache.is_loading()


def test_hydrate_restores_persisted_session():
    cache = SessionCache(MemorySessionStorage({USER_KEY: STORED_USER, TOKEN_KEY: "abc"}))
    cache.hydrate()
    session = cache.get()
    assert session.user.role is Role.OWNER
    assert session.token == "abc"


@pytest.mark.parametrize(
    "items",
    [
        {USER_KEY: '{"id": "1", "name": "Someone", "email": "a@example.com"}', TOKEN_KEY: "abc"},
        {USER_KEY: '{"id": "1", "name": "x", "email": "a@example.com", "role": "root"}', TOKEN_KEY: "abc"},
        {USER_KEY: "not json", TOKEN_KEY: "abc"},
        {USER_KEY: STORED_USER},
    ],
)
def test_hydrate_treats_incomplete_session_as_logged_out(items):
    cache = SessionCache(MemorySessionStorage(items))
    cache.hydrate()
    assert cache.get() is None
    assert not cache.is_loading()


def test_hydrate_only_reads_storage_once():
    storage = MemorySessionStorage()
    cache = SessionCache(storage)
    cache.hydrate()
    storage.set_item(USER_KEY, STORED_USER)
    storage.set_item(TOKEN_KEY, "abc")
    cache.hydrate()
    assert cache.get() is None


def test_cache_accepts_a_single_writer(cache):
    cache.claim_writer()
    with pytest.raises(RuntimeError):
        cache.claim_writer()


def test_file_storage_survives_restart(tmp_path):
    path = tmp_path / "session.json"
    cache = SessionCache(FileSessionStorage(path))
    cache.hydrate()
    writer = cache.claim_writer()
    user = SessionUser(id="1", name="Someone", email="a@example.com", role=Role.ADMIN)
    writer.write(Session(user=user, token="abc"))

    restarted = SessionCache(FileSessionStorage(path))
    restarted.hydrate()
    assert restarted.get() == Session(user=user, token="abc")

    writer.clear()
    assert FileSessionStorage(path).get_item(USER_KEY) is None
    assert FileSessionStorage(path).get_item(TOKEN_KEY) is None


def test_file_storage_ignores_corrupt_file(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{oops", encoding="utf-8")
    assert FileSessionStorage(path).get_item(USER_KEY) is None


# Session issuer

@pytest.mark.asyncio
async def test_login_stores_server_reported_user(api, cache, make_user):
    user = make_user(Role.OWNER, email="owner@example.com")
    issuer = SessionIssuer(api, cache)

    result = await issuer.login("Owner@Example.com", PASSWORD)

    assert result.ok
    session = cache.get()
    assert session == result.session
    assert session.user.id == user["id"]
    assert session.user.email == "owner@example.com"
    assert session.user.role is Role.OWNER
    assert session.user.name == NAMES[Role.OWNER]
    assert cache.storage.get_item(TOKEN_KEY) == session.token
    assert cache.storage.get_item(USER_KEY) is not None


@pytest.mark.asyncio
async def test_login_with_wrong_password_leaves_cache_empty(api, cache, make_user):
    make_user(Role.USER, email="a@b.com")
    issuer = SessionIssuer(api, cache)

    result = await issuer.login("a@b.com", "Wrong1!")

    assert result.error == "Invalid email or password"
    assert result.session is None
    assert cache.get() is None


@pytest.mark.asyncio
async def test_login_rejection_without_message_uses_default(cache):
    async with mock_http(lambda request: httpx.Response(401, json={})) as http:
        result = await SessionIssuer(http, cache).login("a@b.com", "Wrong1!")
    assert result.error == LOGIN_FAILED
    assert cache.get() is None


@pytest.mark.asyncio
async def test_transport_failure_is_returned_not_raised(cache):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with mock_http(handler) as http:
        issuer = SessionIssuer(http, cache)
        login = await issuer.login("a@b.com", PASSWORD)
        signup = await issuer.sign_up("a@b.com", PASSWORD, NAMES[Role.USER], None, "user")

    assert login.error == "connection refused"
    assert signup.error == "connection refused"
    assert cache.get() is None


@pytest.mark.asyncio
async def test_logout_twice_matches_logout_once(api, cache, make_user):
    make_user(Role.USER)
    issuer = SessionIssuer(api, cache)
    await issuer.login("user@example.com", PASSWORD)

    issuer.logout()
    once = (cache.get(), dict(cache.storage.items))
    issuer.logout()

    assert (cache.get(), dict(cache.storage.items)) == once == (None, {})


@pytest.mark.asyncio
async def test_sign_up_does_not_log_in(api, cache, db):
    issuer = SessionIssuer(api, cache)

    result = await issuer.sign_up("New.Owner@Example.com", PASSWORD, NAMES[Role.OWNER], "1 High St", "owner")

    assert result.ok
    assert cache.get() is None
    stored = db["user"].find_one({"email": "new.owner@example.com"})
    assert stored["role"] == "owner"
    assert stored["password_hash"] != PASSWORD


@pytest.mark.asyncio
async def test_sign_up_validates_before_any_request(cache):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    async with mock_http(handler) as http:
        issuer = SessionIssuer(http, cache)
        weak = await issuer.sign_up("a@example.com", "weakpass", NAMES[Role.USER], None, "user")
        short_name = await issuer.sign_up("a@example.com", PASSWORD, "Too Short", None, "user")
        bad_role = await issuer.sign_up("a@example.com", PASSWORD, NAMES[Role.USER], None, "root")

    assert "uppercase" in weak.error
    assert short_name.error.startswith("name:")
    assert bad_role.error.startswith("role:")
    assert requests == []


@pytest.mark.asyncio
async def test_self_registration_as_admin_is_refused(api, cache, db):
    result = await SessionIssuer(api, cache).sign_up(
        "boss@example.com", PASSWORD, NAMES[Role.ADMIN], None, Role.ADMIN
    )
    assert result.error == "Only administrators can create admin accounts"
    assert db["user"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_admin_session_can_register_admin(api, cache, db, make_user):
    make_user(Role.ADMIN)
    issuer = SessionIssuer(api, cache)
    await issuer.login("admin@example.com", PASSWORD)

    result = await issuer.sign_up("second.admin@example.com", PASSWORD, NAMES[Role.ADMIN], None, Role.ADMIN)

    assert result.ok
    assert db["user"].find_one({"email": "second.admin@example.com"})["role"] == "admin"
    assert cache.get().user.email == "admin@example.com"


@pytest.mark.asyncio
async def test_sign_up_with_stale_cached_token(api, db):
    cache = SessionCache(MemorySessionStorage({USER_KEY: STORED_USER, TOKEN_KEY: "expired-or-garbage"}))
    cache.hydrate()
    issuer = SessionIssuer(api, cache)

    result = await issuer.sign_up("fresh@example.com", PASSWORD, NAMES[Role.USER], None, Role.USER)

    assert result.ok
    assert db["user"].find_one({"email": "fresh@example.com"})["role"] == "user"
    assert cache.get().token == "expired-or-garbage"


@pytest.mark.asyncio
async def test_only_admin_sign_up_sends_the_token():
    sent = []

    def handler(request):
        sent.append((json.loads(request.content)["role"], request.headers.get("Authorization")))
        return httpx.Response(200, json={})

    admin = STORED_USER.replace('"owner"', '"admin"')
    cache = SessionCache(MemorySessionStorage({USER_KEY: admin, TOKEN_KEY: "t"}))
    cache.hydrate()
    async with mock_http(handler) as http:
        issuer = SessionIssuer(http, cache)
        await issuer.sign_up("o@example.com", PASSWORD, NAMES[Role.OWNER], None, Role.OWNER)
        await issuer.sign_up("b@example.com", PASSWORD, NAMES[Role.ADMIN], None, Role.ADMIN)

    assert sent == [("owner", None), ("admin", "Bearer t")]


@pytest.mark.asyncio
async def test_login_response_after_logout_is_discarded(cache):
    gate = asyncio.Event()

    async def handler(request):
        await gate.wait()
        return httpx.Response(200, json=login_body("a@example.com"))

    async with mock_http(handler) as http:
        issuer = SessionIssuer(http, cache)
        pending = asyncio.create_task(issuer.login("a@example.com", PASSWORD))
        await asyncio.sleep(0)
        issuer.logout()
        gate.set()
        result = await pending

    assert result.error == LOGIN_SUPERSEDED
    assert cache.get() is None


@pytest.mark.asyncio
async def test_only_latest_login_writes_the_cache(cache):
    gates = {"first@example.com": asyncio.Event(), "second@example.com": asyncio.Event()}

    async def handler(request):
        email = json.loads(request.content)["email"]
        await gates[email].wait()
        return httpx.Response(200, json=login_body(email, role="admin" if email.startswith("first") else "user"))

    async with mock_http(handler) as http:
        issuer = SessionIssuer(http, cache)
        first = asyncio.create_task(issuer.login("first@example.com", PASSWORD))
        await asyncio.sleep(0)
        second = asyncio.create_task(issuer.login("second@example.com", PASSWORD))
        await asyncio.sleep(0)
        gates["second@example.com"].set()
        second_result = await second
        gates["first@example.com"].set()
        first_result = await first

    assert second_result.ok
    assert first_result.error == LOGIN_SUPERSEDED
    assert cache.get().user.email == "second@example.com"
    assert cache.get().user.role is Role.USER


@pytest.mark.asyncio
async def test_update_password(api, cache, make_user):
    make_user(Role.USER)
    issuer = SessionIssuer(api, cache)

    assert (await issuer.update_password(PASSWORD, "Changed#2024")).error == "Not authenticated"

    await issuer.login("user@example.com", PASSWORD)
    wrong = await issuer.update_password("Nope@1234", "Changed#2024")
    changed = await issuer.update_password(PASSWORD, "Changed#2024")
    issuer.logout()

    assert wrong.error == "Current password is incorrect"
    assert changed.ok
    assert (await issuer.login("user@example.com", PASSWORD)).error == "Invalid email or password"
    assert (await issuer.login("user@example.com", "Changed#2024")).ok


@pytest.mark.asyncio
async def test_factories_use_configured_locations(tmp_path):
    cache = open_session_cache(tmp_path / "session.json")
    assert not cache.is_loading()
    assert cache.get() is None

    async with api_client("http://api.internal:9000") as http:
        assert str(http.base_url) == "http://api.internal:9000"
