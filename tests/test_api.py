"""Tests for the HTTP surface and the session middleware"""
import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from cart_session.api import create_app
from cart_session.services.cookie_codec import decode_cookie
from cart_session.utils.settings import (
    AUTH_USER_HEADER,
    CART_COOKIE_NAME,
    CART_CUSTOMER_HEADER,
    CART_KEY_HEADER,
    SESSION_SECRET,
)

from tests.conftest import CUSTOMER_ID

CART = {"cart": {"a1b2": {"product_id": 11, "quantity": 2}}}


@pytest.fixture
def client(session_factory, cache, users):
    """Test client"""
    return TestClient(create_app(session_factory=session_factory, cache=cache))


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestNativeFlow:
    """Cookie-based flow under /session."""

    def test_new_guest_gets_no_cookie_until_cart_has_items(self, client):
        response = client.get("/session")

        assert response.status_code == 200
        assert response.json()["source"] == "native"
        assert CART_COOKIE_NAME not in response.cookies

    def test_adding_items_sets_cookie_and_persists(self, client):
        response = client.patch("/session", json={"values": CART})
        cart_key = response.json()["cart_key"]

        cookie = decode_cookie(response.cookies[CART_COOKIE_NAME], SESSION_SECRET)
        assert cookie.cart_key == cart_key

        again = client.get("/session")
        assert again.json()["cart_key"] == cart_key
        assert again.json()["data"] == CART

    def test_login_migrates_guest_cart(self, client):
        guest_key = client.patch("/session", json={"values": CART}).json()["cart_key"]

        response = client.get("/session", headers={AUTH_USER_HEADER: str(CUSTOMER_ID)})
        body = response.json()

        assert body["cart_key"] != guest_key
        assert body["user_id"] == CUSTOMER_ID
        assert body["data"] == CART
        assert decode_cookie(response.cookies[CART_COOKIE_NAME], SESSION_SECRET).cart_key == body["cart_key"]

    def test_native_ignores_cart_key_header(self, client):
        api_key = client.patch("/api/session", json={"values": CART}).json()["cart_key"]

        response = client.get("/session", headers={CART_KEY_HEADER: api_key})

        assert response.json()["cart_key"] != api_key

    def test_delete_clears_cookie(self, client):
        client.patch("/session", json={"values": CART})

        response = client.delete("/session")

        assert response.json()["data"] == {}
        assert 'max-age=0' in response.headers["set-cookie"].lower()


class TestApiFlow:
    """Headless flow under /api/session."""

    def test_guest_cart_by_header(self, client):
        created = client.patch("/api/session", json={"values": CART})
        cart_key = created.json()["cart_key"]

        assert created.json()["source"] == "api"
        assert "set-cookie" not in created.headers

        response = client.get("/api/session", headers={CART_KEY_HEADER: cart_key})
        assert response.json()["cart_key"] == cart_key
        assert response.json()["data"] == CART

    def test_guest_cart_by_query_parameter(self, client):
        cart_key = client.patch("/api/session", json={"values": CART}).json()["cart_key"]

        response = client.get("/api/session", params={"cart_key": cart_key})

        assert response.json()["data"] == CART

    def test_authenticated_user_cart(self, client):
        headers = {AUTH_USER_HEADER: str(CUSTOMER_ID)}
        cart_key = client.patch("/api/session", json={"values": CART}, headers=headers).json()["cart_key"]

        response = client.get("/api/session", headers=headers)

        assert response.json()["cart_key"] == cart_key
        assert response.json()["customer_id"] == CUSTOMER_ID

    def test_delete_removes_cart(self, client):
        cart_key = client.patch("/api/session", json={"values": CART}).json()["cart_key"]
        client.delete("/api/session", headers={CART_KEY_HEADER: cart_key})

        response = client.get("/api/session", headers={CART_KEY_HEADER: cart_key})

        assert response.json()["data"] == {}


def raw_get(app, path, headers):
    """Plain ASGI GET, header bytes go to the app exactly as given."""
    messages = []

    async def run():
        request_sent = False
        response_done = asyncio.Event()

        async def receive():
            nonlocal request_sent
            if not request_sent:
                request_sent = True
                return {"type": "http.request", "body": b"", "more_body": False}
            await response_done.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            messages.append(message)
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                response_done.set()

        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"testserver")] + headers,
            "client": ("127.0.0.1", 50000),
            "server": ("testserver", 80),
        }
        await app(scope, receive, send)

    asyncio.run(run())
    start = next(m for m in messages if m["type"] == "http.response.start")
    body = b"".join(m.get("body", b"") for m in messages if m["type"] == "http.response.body")
    return start["status"], json.loads(body)


class TestMalformedHeaders:
    """Header values that are not plain ASCII digits."""

    @pytest.mark.parametrize("header", [CART_CUSTOMER_HEADER, AUTH_USER_HEADER])
    def test_superscript_digit_is_treated_as_zero(self, session_factory, cache, users, header):
        app = create_app(session_factory=session_factory, cache=cache)

        status, body = raw_get(app, "/api/session", [(header.lower().encode(), b"\xb2")])

        assert status == 200
        assert body["user_id"] == 0
        assert body["customer_id"] == 0

    def test_overlong_cart_key_header_is_ignored(self, client):
        response = client.patch("/api/session", json={"values": CART}, headers={CART_KEY_HEADER: "a" * 100})
        cart_key = response.json()["cart_key"]

        assert cart_key != "a" * 100

        again = client.get("/api/session", headers={CART_KEY_HEADER: cart_key})
        assert again.json()["data"] == CART
