"""Pytest fixtures for Transit Watch auth tests.

This module provides test fixtures that ensure:
1. No external API calls are made (Discord is a stub behind httpx.MockTransport)
2. No real database connections (in-memory store, or SQLite via aiosqlite)
3. Isolated test environment with controlled configuration
"""

import asyncio
import os
import uuid
from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest

# Set test environment BEFORE importing application modules
os.environ.setdefault("SECRET_KEY", "test-secret-key-at-least-32-characters-long")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DISCORD_CLIENT_ID", "test-client-id")
os.environ.setdefault("DISCORD_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("ENVIRONMENT", "development")

from transit_watch.auth.discord import DiscordOAuth
from transit_watch.auth.service import SignInService
from transit_watch.auth.session import SessionTokenCodec
from transit_watch.config import Settings
from transit_watch.database.models import User
from transit_watch.database.users import UserAlreadyExists

TEST_SECRET = "test-secret-key-at-least-32-characters-long"
TEST_API_BASE = "https://discord.test/api"
TEST_CDN_BASE = "https://cdn.discord.test"
TEST_REDIRECT_URI = "http://localhost:3000/auth/callback"
TEST_VERIFIER = "v" * 64


# =============================================================================
# Test Doubles
# =============================================================================


class StubDiscord:
    """Stand-in for Discord's token and profile endpoints.

    Codes are single-use: a code that has been exchanged once (successfully
    or not) is rejected with `invalid_grant` afterwards, as Discord does.
    """

    INVALID_CODE = {"error": "invalid_grant", "error_description": 'Invalid "code" in request.'}

    def __init__(self, client_id: str = "test-client-id", client_secret: str = "test-client-secret"):
        self.client_id = client_id
        self.client_secret = client_secret
        self._codes: dict[str, dict] = {}
        self._access_tokens: dict[str, dict] = {}
        self.token_requests: list[dict[str, str]] = []
        self.profile_requests = 0

    @property
    def access_tokens(self) -> list[str]:
        return list(self._access_tokens)

    def issue_code(
        self,
        profile: dict,
        code_verifier: str = TEST_VERIFIER,
        redirect_uri: str = TEST_REDIRECT_URI,
    ) -> str:
        code = f"code-{uuid.uuid4().hex}"
        self._codes[code] = {
            "profile": profile,
            "code_verifier": code_verifier,
            "redirect_uri": redirect_uri,
        }
        return code

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/api/oauth2/token":
            return self._token(request)
        if request.method == "GET" and request.url.path == "/api/users/@me":
            return self._profile(request)
        return httpx.Response(404, json={"message": "404: Not Found", "code": 0})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.token_requests.append(form)

        if form.get("client_id") != self.client_id or form.get("client_secret") != self.client_secret:
            return httpx.Response(401, json={"error": "invalid_client"})
        if form.get("grant_type") != "authorization_code":
            return httpx.Response(400, json={"error": "unsupported_grant_type"})

        grant = self._codes.pop(form.get("code", ""), None)
        if grant is None:
            return httpx.Response(400, json=self.INVALID_CODE)
        if form.get("redirect_uri") != grant["redirect_uri"]:
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": 'Invalid "redirect_uri" in request.'},
            )
        if form.get("code_verifier") != grant["code_verifier"]:
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": 'Invalid "code_verifier" in request.'},
            )

        access_token = f"at-{uuid.uuid4().hex}"
        self._access_tokens[access_token] = grant["profile"]
        return httpx.Response(
            200,
            json={
                "access_token": access_token,
                "token_type": "Bearer",
                "expires_in": 604800,
                "refresh_token": "unused",
                "scope": "identify email",
            },
        )

    def _profile(self, request: httpx.Request) -> httpx.Response:
        self.profile_requests += 1
        auth = request.headers.get("Authorization", "")
        token = auth.removeprefix("Bearer ")
        profile = self._access_tokens.get(token)
        if not auth.startswith("Bearer ") or profile is None:
            return httpx.Response(401, json={"message": "401: Unauthorized", "code": 0})
        return httpx.Response(200, json=profile)


class InMemoryUserStore:
    """UserStore over a dict, with the same uniqueness rule as `users.email`.

    Lookups read before yielding to the event loop, so concurrent callers
    can both miss and then race on create.
    """

    def __init__(self):
        self.users: dict[str, User] = {}
        self.email_lookups = 0
        self.create_attempts = 0

    async def find_user_by_email(self, email: str) -> User | None:
        self.email_lookups += 1
        user = self.users.get(email)
        await asyncio.sleep(0)
        return user

    async def find_user_by_id(self, user_id: uuid.UUID) -> User | None:
        await asyncio.sleep(0)
        for user in self.users.values():
            if user.id == user_id:
                return user
        return None

    async def create_user(self, *, name: str | None, email: str, image: str | None) -> User:
        self.create_attempts += 1
        await asyncio.sleep(0)
        if email in self.users:
            raise UserAlreadyExists(email)
        user = User(id=uuid.uuid4(), name=name, email=email, image=image)
        self.users[email] = user
        return user

    def delete(self, email: str) -> None:
        del self.users[email]


class FixedClock:
    """Controllable clock for the session codec."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset settings cache before each test to ensure clean state."""
    from transit_watch.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        discord_client_id="test-client-id",
        discord_client_secret="test-client-secret",
        discord_api_base_url=TEST_API_BASE,
        discord_cdn_base_url=TEST_CDN_BASE,
        secret_key=TEST_SECRET,
        database_url="sqlite+aiosqlite:///:memory:",
        log_level="DEBUG",
    )


@pytest.fixture
def discord_profile() -> dict:
    return {
        "id": "80351110224678912",
        "username": "nelly",
        "email": "nelly@example.com",
        "avatar": "8342729096ea3675442027381ff50dfe",
        "verified": True,
    }


@pytest.fixture
def stub_discord() -> StubDiscord:
    return StubDiscord()


@pytest.fixture
def oauth(settings: Settings, stub_discord: StubDiscord) -> DiscordOAuth:
    return DiscordOAuth.from_settings(settings, transport=stub_discord.transport())


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def codec(settings: Settings, clock: FixedClock) -> SessionTokenCodec:
    return SessionTokenCodec.from_settings(settings, clock=clock)


@pytest.fixture
def user_store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def service(
    oauth: DiscordOAuth,
    user_store: InMemoryUserStore,
    codec: SessionTokenCodec,
) -> SignInService:
    return SignInService(oauth, user_store, codec)


@pytest.fixture
def sample_user() -> User:
    return User(
        id=uuid.UUID("0b6e2f36-5d0a-4b83-9a51-1d4c1a2f7e10"),
        email="rider@example.com",
        name="rider",
        image=None,
    )
