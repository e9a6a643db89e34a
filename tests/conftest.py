"""Shared test fixtures."""

from __future__ import annotations

import json
import os
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterator
from typing import Any

os.environ.setdefault("CITADEL_DATABASE_URL", "sqlite+aiosqlite://")
os.environ["CITADEL_JWT_SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["CITADEL_JWT_ALGORITHM"] = "HS256"
os.environ["CITADEL_CRON_SECRET"] = "test-cron-secret"
os.environ["CITADEL_RATE_LIMIT_REQUESTS"] = "10000"
os.environ["CITADEL_LOG_FORMAT"] = "console"
os.environ["CITADEL_DISCORD_BOT_TOKEN"] = "test-bot-token"
os.environ["CITADEL_DISCORD_GUILD_ID"] = "guild-1"
os.environ["CITADEL_DISCORD_POW_CHANNEL_ID"] = "pow-channel"
os.environ["CITADEL_DISCORD_GROUP_POW_CHANNEL_ID"] = "group-channel"
os.environ["CITADEL_BLINK_API_KEY"] = "test-blink-key"
os.environ["CITADEL_BLINK_WALLET_ID"] = "test-wallet"
os.environ["CITADEL_STORAGE_URL"] = "https://storage.test"
os.environ["CITADEL_STORAGE_SERVICE_KEY"] = "test-service-key"
os.environ["CITADEL_VAPID_PUBLIC_KEY"] = "test-vapid-public-key"
os.environ["CITADEL_VAPID_PRIVATE_KEY"] = "test-vapid-key"

import fakeredis
import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from citadel.auth.discord_oauth import ROLE_BITCOINER, DiscordOAuthClient
from citadel.auth.jwt import create_access_token
from citadel.config import get_settings
from citadel.database import close_db, get_engine, get_session_factory, init_db
from citadel.db.models import Base, User
from citadel.dependencies import (
    get_blink_client,
    get_discord_client,
    get_oauth_client,
    get_push_sender,
    get_storage_client,
)
from citadel.discord.client import DiscordClient
from citadel.main import create_app
from citadel.payments.blink import BlinkClient
from citadel.push.sender import PushDeliveryError, WebPushSender
from citadel.redis_client import set_redis
from citadel.storage import StorageClient

get_settings.cache_clear()

TEST_DATABASE_URL = "sqlite+aiosqlite://"


# ---------------------------------------------------------------------------
# Fake upstream APIs (served through httpx.MockTransport)
# ---------------------------------------------------------------------------


class FakeDiscordAPI:
    """The Discord REST endpoints the bot calls, backed by dicts."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.reactions: dict[str, list[dict[str, Any]]] = {}
        self.members: dict[str, dict[str, Any]] = {}
        self.fail_posts = False
        self._next_id = 1000

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/v10")
        parts = path.strip("/").split("/")

        if request.method == "POST" and path == "/users/@me/channels":
            recipient = json.loads(request.content)["recipient_id"]
            return httpx.Response(200, json={"id": f"dm-{recipient}"})

        if parts[0] == "channels" and parts[2] == "messages":
            if request.method == "POST":
                if self.fail_posts:
                    return httpx.Response(500, json={"message": "boom"})
                self._next_id += 1
                return httpx.Response(200, json={"id": str(self._next_id), "channel_id": parts[1]})
            message_id = parts[3]
            if message_id not in self.reactions:
                return httpx.Response(404, json={"message": "Unknown Message"})
            return httpx.Response(200, json={"id": message_id, "reactions": self.reactions[message_id]})

        if parts[0] == "guilds" and parts[2] == "members":
            member = self.members.get(parts[3])
            if member is None:
                return httpx.Response(404, json={"message": "Unknown Member"})
            return httpx.Response(200, json=member)

        return httpx.Response(404, json={"message": f"unhandled {request.method} {path}"})

    def posts_to(self, channel_id: str) -> list[httpx.Request]:
        suffix = f"/channels/{channel_id}/messages"
        return [r for r in self.requests if r.method == "POST" and r.url.path.endswith(suffix)]


class FakeBlinkAPI:
    """Blink GraphQL: invoice creation and payment status."""

    def __init__(self) -> None:
        self.bodies: list[dict[str, Any]] = []
        self.statuses: dict[str, str] = {}
        self.fail = False
        self._count = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.bodies.append(body)
        if self.fail:
            return httpx.Response(503, text="unavailable")

        query = body["query"]
        if "lnInvoicePaymentStatusByHash" in query:
            payment_hash = body["variables"]["input"]["paymentHash"]
            status = self.statuses.get(payment_hash)
            return httpx.Response(200, json={"data": {"lnInvoicePaymentStatusByHash": {"status": status}}})

        operation = "lnInvoiceCreateOnBehalfOfRecipient" if "OnBehalfOfRecipient" in query else "lnInvoiceCreate"
        self._count += 1
        amount = body["variables"]["input"]["amount"]
        invoice = {
            "paymentRequest": f"lnbc{amount}n1test{self._count}",
            "paymentHash": f"hash{self._count}",
            "satoshis": amount,
        }
        return httpx.Response(200, json={"data": {operation: {"invoice": invoice, "errors": []}}})


class FakeStorageAPI:
    def __init__(self) -> None:
        self.uploads: list[tuple[str, bytes]] = []
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(500, json={"error": "storage down"})
        self.uploads.append((request.url.path, request.content))
        return httpx.Response(200, json={"Key": request.url.path})


class RecordingPushSender(WebPushSender):
    """Records deliveries instead of calling the push services."""

    def __init__(self) -> None:
        super().__init__("test-vapid-key", "mailto:test@example.com")
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.expired_endpoints: set[str] = set()

    async def send(self, endpoint: str, keys: dict[str, str], payload: dict[str, Any]) -> None:
        if endpoint in self.expired_endpoints:
            raise PushDeliveryError("Gone", status_code=410)
        self.sent.append((endpoint, payload))


@pytest.fixture
def override_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[Callable[..., None]]:
    """Set ``CITADEL_*`` variables for one test and rebuild the settings."""

    def _override(**values: object) -> None:
        for key, value in values.items():
            monkeypatch.setenv(f"CITADEL_{key.upper()}", str(value))
        get_settings.cache_clear()

    yield _override
    monkeypatch.undo()
    get_settings.cache_clear()


@pytest.fixture
def discord_api() -> FakeDiscordAPI:
    return FakeDiscordAPI()


@pytest.fixture
def blink_api() -> FakeBlinkAPI:
    return FakeBlinkAPI()


@pytest.fixture
def storage_api() -> FakeStorageAPI:
    return FakeStorageAPI()


@pytest.fixture
def push_sender() -> RecordingPushSender:
    return RecordingPushSender()


@pytest.fixture
def discord_client(discord_api: FakeDiscordAPI) -> DiscordClient:
    settings = get_settings()
    return DiscordClient(
        settings.discord_api_url, settings.discord_bot_token, transport=httpx.MockTransport(discord_api.handler)
    )


@pytest.fixture
def blink_client(blink_api: FakeBlinkAPI) -> BlinkClient:
    settings = get_settings()
    return BlinkClient(
        settings.blink_api_url,
        settings.blink_api_key,
        settings.blink_wallet_id,
        transport=httpx.MockTransport(blink_api.handler),
    )


@pytest.fixture
def oauth_handler() -> dict[str, Any]:
    """Mutable Discord OAuth responses for the login flow tests."""
    return {
        "profile": {"id": "200000000000000001", "username": "hal", "avatar": None},
        "roles": ["1456691252329447517"],
        "token_status": 200,
    }


# ---------------------------------------------------------------------------
# App / database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    discord_client: DiscordClient,
    blink_client: BlinkClient,
    storage_api: FakeStorageAPI,
    push_sender: RecordingPushSender,
    oauth_handler: dict[str, Any],
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client over a fresh in-memory database."""
    get_settings.cache_clear()
    await init_db(TEST_DATABASE_URL)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    redis = fakeredis.FakeAsyncRedis(decode_responses=True)
    set_redis(redis)

    def oauth_transport(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/oauth2/token"):
            if oauth_handler["token_status"] != 200:
                return httpx.Response(oauth_handler["token_status"], json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "user-access-token", "token_type": "Bearer"})
        if path.endswith("/users/@me"):
            return httpx.Response(200, json=oauth_handler["profile"])
        if "/member" in path:
            if oauth_handler["roles"] is None:
                return httpx.Response(404, json={"message": "Unknown Guild"})
            return httpx.Response(200, json={"roles": oauth_handler["roles"]})
        return httpx.Response(404)

    settings = get_settings()
    app = create_app()
    app.dependency_overrides[get_discord_client] = lambda: discord_client
    app.dependency_overrides[get_blink_client] = lambda: blink_client
    app.dependency_overrides[get_push_sender] = lambda: push_sender
    app.dependency_overrides[get_storage_client] = lambda: StorageClient(
        settings.storage_url, settings.storage_service_key, transport=httpx.MockTransport(storage_api.handler)
    )
    app.dependency_overrides[get_oauth_client] = lambda: DiscordOAuthClient(
        settings, transport=httpx.MockTransport(oauth_transport)
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await redis.flushall()
    set_redis(None)
    await close_db()


@pytest_asyncio.fixture
async def redis_client(client: AsyncClient) -> fakeredis.FakeAsyncRedis:
    from citadel.redis_client import get_redis

    return get_redis()


@pytest.fixture
def session_factory(client: AsyncClient) -> async_sessionmaker[AsyncSession]:
    """Sessions for direct setup and assertions; open one per block."""
    return get_session_factory()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.discord_id, user.role_status)
    return {"Authorization": f"Bearer {token}"}


UserFactory = Callable[..., Awaitable[tuple[User, dict[str, str]]]]


@pytest.fixture
def make_user(session_factory: async_sessionmaker[AsyncSession]) -> UserFactory:
    """Insert a user directly and return it with bearer headers."""
    counter = {"n": 0}

    async def _make(
        username: str | None = None,
        role_status: int = ROLE_BITCOINER,
        accumulated_sats: int = 0,
    ) -> tuple[User, dict[str, str]]:
        counter["n"] += 1
        n = counter["n"]
        async with session_factory() as db:
            user = User(
                discord_id=str(100000000000000000 + n),
                discord_username=username or f"pleb{n}",
                discord_avatar_url=f"https://cdn.discordapp.com/embed/avatars/{n % 5}.png",
                discord_roles=[],
                role_status=role_status,
                accumulated_sats=accumulated_sats,
                total_donated_sats=0,
                total_pow_time=0,
            )
            db.add(user)
            await db.commit()
        return user, auth_headers(user)

    return _make


@pytest_asyncio.fixture
async def member(make_user: UserFactory) -> tuple[User, dict[str, str]]:
    """A user holding the bitcoiner role."""
    return await make_user("satoshi")


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient, member: tuple[User, dict[str, str]]) -> AsyncClient:
    client.headers.update(member[1])
    return client
