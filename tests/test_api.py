"""
tests.test_api

In-process HTTP tests: response envelope, token flow, and the main order/ticket routes.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from storefront.api.app import create_app
from storefront.auth.jwt import JwtConfig, issue_token
from storefront.auth.roles import Capability
from storefront.db.repositories.users import UserRepo
from storefront.settings import Settings


@pytest_asyncio.fixture
async def app(settings: Settings) -> AsyncIterator[FastAPI]:
    app = create_app(settings=settings)
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _signup(client: httpx.AsyncClient, app: FastAPI, caps: int = Capability.USER) -> dict:
    email = f"{uuid.uuid4().hex[:8]}@example.test"
    r = await client.post("/auth/register", json={"email": email, "password": "pa55word!"})
    assert r.status_code == 201, r.text
    user_id = r.json()["body"]["id"]
    if caps != Capability.USER:
        # Bootstrap roles straight in the store; the roles endpoint itself needs an admin.
        async with app.state.sessionmaker() as s:
            repo = UserRepo(s)
            await repo.set_capabilities(await repo.get(uuid.UUID(user_id)), int(caps))
            await s.commit()
    r = await client.post("/auth/login", json={"email": email, "password": "pa55word!"})
    assert r.status_code == 200, r.text
    token = r.json()["body"]["access_token"]
    return {"id": user_id, "headers": {"Authorization": f"Bearer {token}"}}


@pytest.mark.asyncio
async def test_missing_token_renders_failure_envelope(client: httpx.AsyncClient) -> None:
    r = await client.get("/users/me/cart")
    assert r.status_code == 401
    assert r.json() == {
        "success": False,
        "body": {"error": "Unauthenticated", "detail": "Missing bearer token", "retryable": False},
    }


@pytest.mark.asyncio
async def test_token_with_unknown_capability_bits_is_rejected(
    client: httpx.AsyncClient, settings: Settings
) -> None:
    token = issue_token(
        cfg=JwtConfig.from_settings(settings), subject=str(uuid.uuid4()), capabilities=64
    )
    r = await client.get("/users/me/cart", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json()["body"]["error"] == "Unauthenticated"


@pytest.mark.asyncio
async def test_wrong_password_is_invalid_credentials(client: httpx.AsyncClient) -> None:
    await client.post("/auth/register", json={"email": "eve@example.test", "password": "pa55word!"})
    r = await client.post("/auth/login", json={"email": "eve@example.test", "password": "nope"})
    assert r.status_code == 401
    assert r.json()["body"]["error"] == "InvalidCredentials"


@pytest.mark.asyncio
async def test_validation_errors_use_the_envelope(client: httpx.AsyncClient) -> None:
    r = await client.post("/auth/register", json={"email": "not-an-email", "password": "x"})
    assert r.status_code == 422
    body = r.json()
    assert body["success"] is False
    assert body["body"]["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_expired_token_is_unauthenticated(
    client: httpx.AsyncClient, app: FastAPI, settings: Settings
) -> None:
    admin = await _signup(client, app, Capability.USER | Capability.ADMIN)
    customer = await _signup(client, app)
    token = issue_token(
        cfg=JwtConfig.from_settings(settings),
        subject=admin["id"],
        capabilities=int(Capability.USER | Capability.ADMIN),
        ttl=timedelta(minutes=5),
        now=datetime.now(tz=UTC) - timedelta(hours=1),
    )
    r = await client.patch(
        f"/users/{customer['id']}/roles",
        json={"grant": ["SUPPORT_AGENT"]},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert r.status_code == 401
    body = r.json()
    assert body["success"] is False
    assert body["body"]["error"] == "Unauthenticated"
    assert "expired" in body["body"]["detail"].lower()


@pytest.mark.asyncio
async def test_unknown_capability_name_is_a_validation_error(
    client: httpx.AsyncClient, app: FastAPI
) -> None:
    admin = await _signup(client, app, Capability.USER | Capability.ADMIN)
    customer = await _signup(client, app)
    r = await client.patch(
        f"/users/{customer['id']}/roles", json={"grant": ["OWNER"]}, headers=admin["headers"]
    )
    assert r.status_code == 422
    assert r.json()["success"] is False
    assert r.json()["body"]["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_routing_misses_use_the_envelope(client: httpx.AsyncClient) -> None:
    r = await client.get("/orders/not-a-route/x/y")
    assert r.status_code == 404
    assert r.json() == {"success": False, "body": {"error": "NotFound", "detail": "Not Found"}}

    r = await client.put("/orders")
    assert r.status_code == 405
    assert r.json()["success"] is False
    assert r.json()["body"]["error"] == "MethodNotAllowed"
    assert "POST" in r.headers["allow"]


@pytest.mark.asyncio
async def test_unhandled_errors_render_an_internal_error(app: FastAPI) -> None:
    async def crash() -> None:
        raise RuntimeError("disk on fire")

    app.add_api_route("/crash", crash)
    # The server-error middleware re-raises after responding; keep the response.
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        r = await c.get("/crash")
    assert r.status_code == 500
    assert r.json() == {
        "success": False,
        "body": {"error": "InternalError", "detail": "Internal server error"},
    }


@pytest.mark.asyncio
async def test_order_flow_over_http(client: httpx.AsyncClient, app: FastAPI) -> None:
    customer = await _signup(client, app)
    admin = await _signup(client, app, Capability.USER | Capability.ADMIN)
    agent = await _signup(client, app, Capability.USER | Capability.DELIVERY_AGENT)

    r = await client.put(
        "/agents/me/availability", json={"available": True}, headers=agent["headers"]
    )
    assert r.json()["body"]["available"] is True

    r = await client.post(
        "/users/me/cart/items",
        json={"product_id": "hoodie", "size": "S", "color": "grey", "quantity": 1},
        headers=customer["headers"],
    )
    assert r.json()["body"][0]["product_id"] == "hoodie"

    r = await client.post("/orders", headers=customer["headers"])
    assert r.status_code == 201, r.text
    order = r.json()["body"]
    assert order["status"] == "PLACED"

    # Customers cannot trigger dispatch.
    r = await client.post(f"/orders/{order['id']}/assign", headers=customer["headers"])
    assert r.status_code == 403
    assert r.json()["body"]["error"] == "Forbidden"

    r = await client.post(f"/orders/{order['id']}/assign", headers=admin["headers"])
    assert r.status_code == 409
    assert r.json()["body"]["error"] == "IllegalTransition"

    r = await client.post(f"/orders/{order['id']}/confirm", headers=admin["headers"])
    assert r.json()["body"]["status"] == "CONFIRMED"

    r = await client.post(f"/orders/{order['id']}/assign", headers=admin["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["body"]["assigned_agent_id"] == agent["id"]

    r = await client.post(f"/orders/{order['id']}/assign", headers=admin["headers"])
    assert r.status_code == 409
    assert r.json()["body"]["error"] == "AlreadyAssigned"

    for target in ("OUT_FOR_DELIVERY", "DELIVERED"):
        r = await client.patch(
            f"/orders/{order['id']}/status", json={"status": target}, headers=agent["headers"]
        )
        assert r.status_code == 200, r.text
        assert r.json()["body"]["status"] == target

    r = await client.post(f"/orders/{order['id']}/return", headers=customer["headers"])
    assert r.json()["body"]["status"] == "RETURNED"
    assert r.json()["body"]["version"] == 6

    r = await client.get(f"/orders/{order['id']}/history", headers=customer["headers"])
    assert [h["to_status"] for h in r.json()["body"]] == [
        "CONFIRMED",
        "ASSIGNED",
        "OUT_FOR_DELIVERY",
        "DELIVERED",
        "RETURNED",
    ]


@pytest.mark.asyncio
async def test_roles_endpoint_and_no_agent_available(client: httpx.AsyncClient, app: FastAPI) -> None:
    admin = await _signup(client, app, Capability.USER | Capability.ADMIN)
    other = await _signup(client, app)

    r = await client.patch(
        f"/users/{other['id']}/roles",
        json={"grant": ["SUPPORT_AGENT"]},
        headers=admin["headers"],
    )
    assert r.status_code == 200, r.text
    assert r.json()["body"]["capabilities"] == ["USER", "SUPPORT_AGENT"]
    assert r.json()["body"]["mask"] == 5

    await client.post(
        "/users/me/cart/items", json={"product_id": "cap", "quantity": 2}, headers=other["headers"]
    )
    order = (await client.post("/orders", headers=other["headers"])).json()["body"]
    await client.post(f"/orders/{order['id']}/confirm", headers=admin["headers"])
    r = await client.post(f"/orders/{order['id']}/assign", headers=admin["headers"])
    assert r.status_code == 503
    assert r.json()["body"]["error"] == "NoAgentAvailable"


@pytest.mark.asyncio
async def test_ticket_flow_over_http(client: httpx.AsyncClient, app: FastAPI) -> None:
    customer = await _signup(client, app)
    support = await _signup(client, app, Capability.USER | Capability.SUPPORT_AGENT)

    r = await client.post(
        "/tickets", json={"subject": "Late parcel", "body": "Where is it?"}, headers=customer["headers"]
    )
    assert r.status_code == 201, r.text
    ticket_id = r.json()["body"]["id"]

    r = await client.post(f"/tickets/{ticket_id}/claim", headers=support["headers"])
    assert r.json()["body"]["status"] == "IN_PROGRESS"

    r = await client.post(
        f"/tickets/{ticket_id}/messages", json={"body": "On its way."}, headers=support["headers"]
    )
    assert r.status_code == 201

    r = await client.get(f"/tickets/{ticket_id}/messages", headers=customer["headers"])
    assert [m["body"] for m in r.json()["body"]] == ["Where is it?", "On its way."]

    for target, who in (("RESOLVED", support), ("CLOSED", customer)):
        r = await client.patch(
            f"/tickets/{ticket_id}/status", json={"status": target}, headers=who["headers"]
        )
        assert r.json()["body"]["status"] == target

    r = await client.post(f"/tickets/{ticket_id}/reopen", headers=customer["headers"])
    assert r.json()["body"]["status"] == "OPEN"
    assert r.json()["body"]["reopen_count"] == 1
