# tests/conftest.py
from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from fakeredis import aioredis

from tipac.config import Settings
from tipac.model.db import Ticket, InvitationCard
from tipac.model.records import RecordStore
from tipac.server import create_app

PESAPAL_BASE = "https://pesapal.test/v3"
ADMIN_EMAIL = "admin@tipac.test"
ADMIN_PASSWORD = "s3cret-pass"


# =========================
# Logging -> stdout
# =========================
@pytest.fixture(scope="session", autouse=True)
def _tests_log_to_stdout():
    root = logging.getLogger()
    if not any(isinstance(h, logging.StreamHandler)
               and getattr(h, "stream", None) is sys.stdout
               for h in root.handlers):
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(h)


# Make anyio run on asyncio (so our async fixtures work everywhere)
@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


# ==============================================================
# Upstream stubs (Pesapal + YouTube) behind one MockTransport
# ==============================================================
class Upstream:
    """Scriptable stand-in for the payment gateway and the video API."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.token_response: Tuple[int, Any] = (200, {"token": "tok-123"})
        self.order_response: Optional[Tuple[int, Any]] = None
        # tracking id -> payment_status_description
        self.statuses: Dict[str, str] = {}
        self.confirmation_codes: Dict[str, str] = {}
        self.youtube_response: Tuple[int, Any] = (500, {"error": "down"})

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "www.googleapis.com":
            status, body = self.youtube_response
            if isinstance(body, bytes):
                return httpx.Response(status, content=body)
            return httpx.Response(status, json=body)

        if path.endswith("/api/Auth/RequestToken"):
            status, body = self.token_response
            return httpx.Response(status, json=body)

        if path.endswith("/api/Transactions/SubmitOrderRequest"):
            if self.order_response is not None:
                status, body = self.order_response
                return httpx.Response(status, json=body)
            order = json.loads(request.content)
            tracking_id = f"trk-{order['id']}"
            return httpx.Response(200, json={
                "order_tracking_id": tracking_id,
                "merchant_reference": order["id"],
                "redirect_url": f"https://pay.test/checkout/{tracking_id}",
                "error": None,
                "status": "200",
            })

        if path.endswith("/api/Transactions/GetTransactionStatus"):
            tracking_id = request.url.params["orderTrackingId"]
            return httpx.Response(200, json={
                "payment_status_description":
                    self.statuses.get(tracking_id, "INVALID"),
                "payment_method": "MTN UG",
                "confirmation_code":
                    self.confirmation_codes.get(tracking_id, ""),
                "status": "200",
            })

        if path.endswith("/api/URLSetup/RegisterIPN"):
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "url": body["url"], "ipn_id": "ipn-new",
                "message": "IPN registered", "error": None,
            })

        if path.endswith("/api/URLSetup/GetIpnList"):
            return httpx.Response(200, json=[
                {"url": "https://tipac.test/api/pesapal-ipn",
                 "ipn_id": "ipn-1"},
            ])

        return httpx.Response(404, json={"error": "no route"})


class FakeMailer:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail = False

    async def send_contact_notification(self, data: Dict[str, Any]) -> None:
        if self.fail:
            raise OSError("smtp unreachable")
        self.sent.append(dict(data))


# ==============================================================
# App + clients
# ==============================================================
@pytest.fixture
def messages_backend():
    return "redis"


@pytest.fixture
def settings(tmp_path, messages_backend) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'tipac.db'}",
        messages_backend=messages_backend,
        session_secret="test-secret",
        session_max_age=3600,
        admin_email=ADMIN_EMAIL,
        admin_password=ADMIN_PASSWORD,
        pesapal_consumer_key="ck",
        pesapal_consumer_secret="cs",
        pesapal_base_url=PESAPAL_BASE,
        pesapal_callback_url="https://tipac.test/payment-status",
        pesapal_ipn_id="ipn-1",
        pesapal_ipn_url="https://tipac.test/api/pesapal-ipn",
        youtube_api_key=None,
        youtube_channel_id="UC-tipac",
        log_level="DEBUG",
    )


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
async def fake_redis():
    r = aioredis.FakeRedis(decode_responses=True)
    yield r
    await r.flushall()
    await r.aclose()


@pytest.fixture
async def app(settings, upstream, mailer, fake_redis):
    app = create_app(settings)
    app.state.http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app.state.redis = fake_redis
    app.state.mailer = mailer
    async with app.router.lifespan_context(app):
        yield app
    await app.state.http.aclose()


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app),
                       base_url="http://testserver")


@pytest.fixture
async def client(app):
    async with _client(app) as c:
        yield c


@pytest.fixture
async def admin(app):
    """A second client holding a logged-in admin session."""
    async with _client(app) as c:
        r = await c.post("/admin/api/login",
                         json={"email": ADMIN_EMAIL,
                               "password": ADMIN_PASSWORD})
        assert r.status_code == 200, r.text
        yield c


# ==============================================================
# Direct store access for seeding and assertions
# ==============================================================
@pytest.fixture
async def store(app):
    async with app.state.SessionAsync() as db:
        yield RecordStore(db=db, gated=app.state.gated)


@pytest.fixture
def load_ticket(app):
    async def _load(ticket_id: str) -> Optional[Ticket]:
        async with app.state.SessionAsync() as db:
            return await db.get(Ticket, ticket_id)
    return _load


@pytest.fixture
def load_card(app):
    async def _load(card_id: str) -> Optional[InvitationCard]:
        async with app.state.SessionAsync() as db:
            return await db.get(InvitationCard, card_id)
    return _load


@pytest.fixture
async def event_id(store) -> str:
    return await store.create_event({
        "title": "Schools Drama Festival",
        "date": "2025-08-30",
        "location": "National Theatre, Kampala",
        "organizer_name": "TIPAC",
        "sponsor_logos": [{"name": "Sponsor", "url": "https://x.test/s.png"}],
    })
