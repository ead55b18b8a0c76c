from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Iterable, List

import httpx

from checkout.flow import CheckoutForm, NotificationState, SubmissionState
from common.backend import Backend
from common.config import Settings
from entities.models import Program
from state.session_store import SessionProvider


SETTINGS = Settings(url="https://db.example.test", anon_key="anon-key")


class FakeBackendServer:
    """Routes auth, REST and function calls of one test scenario."""

    def __init__(self, *, relay_status: int = 200, orders: Iterable[Dict[str, Any]] = ()) -> None:
        self.relay_status = relay_status
        self.requests: List[httpx.Request] = []
        self.orders: Dict[str, Dict[str, Any]] = {o["id"]: dict(o) for o in orders}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/auth/v1/token":
            return httpx.Response(
                200,
                json={"access_token": "a1", "refresh_token": "r1", "expires_in": 3600, "user": {"id": "u-1"}},
            )
        if path == "/functions/v1/send-purchase-event":
            if self.relay_status != 200:
                return httpx.Response(self.relay_status, text="relay down")
            return httpx.Response(200, json={"success": True, "sendpulse_sent": True})
        if path == "/rest/v1/orders" and request.method == "POST":
            row = json.loads(request.content)
            self.orders[row["id"]] = row
            return httpx.Response(201, json=[row])
        if path == "/rest/v1/orders" and request.method == "PATCH":
            patch = json.loads(request.content)
            if "id" in request.url.params:
                order_id = request.url.params["id"].split(".", 1)[1]
                self.orders[order_id].update(patch)
                return httpx.Response(200, json=[self.orders[order_id]])
            email = request.url.params["email"].split(".", 1)[1]
            linked = [o for o in self.orders.values() if o["email"] == email and o.get("user_id") is None]
            for order in linked:
                order.update(patch)
            return httpx.Response(200, json=linked)
        if path == "/rest/v1/programs":
            return httpx.Response(200, json=[{"id": "p1", "slug": "robotik", "title": "Robotik", "price": 500}])
        return httpx.Response(404, text="no route")

    def paths(self) -> List[str]:
        return [f"{r.method} {r.url.path}" for r in self.requests]


async def _no_sleep(delay: float) -> None:
    return None


def _form() -> CheckoutForm:
    return CheckoutForm(
        full_name="Ayşe Yılmaz",
        email="ayse@example.com",
        phone="5321234567",
        tc_no="12345678901",
        city="İstanbul",
        district="Kadıköy",
        kvkk_consent=True,
    )


def test_sign_in_then_checkout_end_to_end():
    server = FakeBackendServer()
    http = httpx.AsyncClient(transport=httpx.MockTransport(server))

    async def run():
        async with Backend(SETTINGS, http=http, sessions=SessionProvider()) as backend:
            await backend.auth.sign_in("ayse@example.com", "s3cret")
            programs = backend.programs(status="active")
            await programs.load()
            submission = backend.checkout(sleep=_no_sleep)
            order = await submission.submit(_form(), programs.items[0])
            return submission, order

    submission, order = asyncio.run(run())

    assert submission.state is SubmissionState.COMPLETED
    assert submission.notification_state is NotificationState.SENT
    assert order.program_slug == "robotik"
    assert server.paths() == [
        "POST /auth/v1/token",
        "PATCH /rest/v1/orders",
        "GET /rest/v1/programs",
        "POST /rest/v1/orders",
        "POST /functions/v1/send-purchase-event",
        "PATCH /rest/v1/orders",
    ]
    insert = server.requests[3]
    assert insert.headers["authorization"] == "Bearer a1"
    assert insert.headers["x-application-name"] == "gonca-yoldas-blog"
    assert server.orders[order.id]["sendpulse_sent"] is True
    assert server.orders[order.id]["user_id"] == "u-1"
    assert not http.is_closed


def test_checkout_records_failed_notification():
    server = FakeBackendServer(relay_status=500)
    http = httpx.AsyncClient(transport=httpx.MockTransport(server))
    program = Program(id="p1", slug="robotik", title="Robotik", price=500)

    async def run():
        async with Backend(SETTINGS, http=http, sessions=SessionProvider()) as backend:
            await backend.auth.sign_in("ayse@example.com", "s3cret")
            submission = backend.checkout(sleep=_no_sleep)
            await submission.submit(_form(), program)
            return submission

    submission = asyncio.run(run())

    assert submission.state is SubmissionState.COMPLETED
    assert submission.notification_state is NotificationState.FAILED
    assert server.paths().count("POST /functions/v1/send-purchase-event") == 4
    stored = next(iter(server.orders.values()))
    assert stored["sendpulse_sent"] is False
    assert "HTTP 500" in stored["sendpulse_error"]


def test_check_connection():
    ok = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[])))
    down = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503, text="down")))

    async def check(http):
        async with Backend(SETTINGS, http=http, sessions=SessionProvider()) as backend:
            return await backend.check_connection()

    assert asyncio.run(check(ok)) is True
    assert asyncio.run(check(down)) is False


def test_sign_in_claims_guest_orders():
    server = FakeBackendServer(
        orders=[
            {"id": "g1", "email": "ayse@example.com", "user_id": None},
            {"id": "g2", "email": "ayse@example.com", "user_id": "u-other"},
            {"id": "g3", "email": "baska@example.com", "user_id": None},
        ]
    )
    http = httpx.AsyncClient(transport=httpx.MockTransport(server))

    async def run():
        async with Backend(SETTINGS, http=http, sessions=SessionProvider()) as backend:
            await backend.auth.sign_in("ayse@example.com", "s3cret")

    asyncio.run(run())

    link = server.requests[1]
    assert link.url.params["email"] == "eq.ayse@example.com"
    assert link.url.params["user_id"] == "is.null"
    assert link.headers["authorization"] == "Bearer a1"
    assert {k: o["user_id"] for k, o in server.orders.items()} == {"g1": "u-1", "g2": "u-other", "g3": None}
