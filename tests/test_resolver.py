"""Tests for identity resolution and the SQLAlchemy user store."""

import asyncio
import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from transit_watch.auth.discord import DiscordIdentity, DiscordOAuth
from transit_watch.auth.resolver import IdentityResolver
from transit_watch.database.models import Base
from transit_watch.database.users import SqlAlchemyUserStore, UserAlreadyExists

from conftest import InMemoryUserStore


@pytest.fixture
def identity() -> DiscordIdentity:
    return DiscordIdentity(
        external_id="80351110224678912",
        username="nelly",
        email="nelly@example.com",
        avatar_ref="8342729096ea3675442027381ff50dfe",
    )


@pytest.fixture
def resolver(user_store: InMemoryUserStore, oauth: DiscordOAuth) -> IdentityResolver:
    return IdentityResolver(user_store, avatar_url=oauth.avatar_url)


@pytest_asyncio.fixture
async def sql_store():
    """SqlAlchemyUserStore over an in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield SqlAlchemyUserStore(session_factory)

    await engine.dispose()


class TestIdentityResolver:
    """Tests for find-or-create by email."""

    @pytest.mark.asyncio
    async def test_creates_new_user(self, resolver: IdentityResolver, user_store: InMemoryUserStore, identity):
        """Test a first sign-in creates the user from the profile."""
        user = await resolver.resolve(identity)

        assert user.email == "nelly@example.com"
        assert user.name == "nelly"
        assert user.image == (
            "https://cdn.discord.test/avatars/80351110224678912/8342729096ea3675442027381ff50dfe.png"
        )
        assert list(user_store.users) == ["nelly@example.com"]

    @pytest.mark.asyncio
    async def test_no_avatar_gives_null_image(self, resolver: IdentityResolver, identity):
        """Test a profile without avatar stores no image."""
        identity.avatar_ref = None
        user = await resolver.resolve(identity)
        assert user.image is None

    @pytest.mark.asyncio
    async def test_idempotent(self, resolver: IdentityResolver, user_store: InMemoryUserStore, identity):
        """Test resolving twice yields the same user and one row."""
        first = await resolver.resolve(identity)
        second = await resolver.resolve(identity)

        assert first.id == second.id
        assert len(user_store.users) == 1
        assert user_store.create_attempts == 1

    @pytest.mark.asyncio
    async def test_existing_user_not_updated(self, resolver: IdentityResolver, identity):
        """Test a later sign-in does not overwrite name or image."""
        first = await resolver.resolve(identity)

        identity.username = "renamed"
        identity.avatar_ref = "newavatar"
        second = await resolver.resolve(identity)

        assert second.id == first.id
        assert second.name == "nelly"
        assert second.image.endswith("/8342729096ea3675442027381ff50dfe.png")

    @pytest.mark.asyncio
    async def test_concurrent_first_sign_in(self, resolver: IdentityResolver, user_store: InMemoryUserStore, identity):
        """Test racing creations for one email converge on one user."""
        first, second = await asyncio.gather(
            resolver.resolve(identity),
            resolver.resolve(identity),
        )

        assert first.id == second.id
        assert len(user_store.users) == 1
        # Both callers missed the lookup; the loser's insert was refused
        assert user_store.create_attempts == 2

    @pytest.mark.asyncio
    async def test_conflict_without_visible_row_propagates(self, oauth: DiscordOAuth, identity):
        """Test a uniqueness error with no readable row is not swallowed."""
        class BrokenStore(InMemoryUserStore):
            async def create_user(self, *, name, email, image):
                raise UserAlreadyExists(email)

        resolver = IdentityResolver(BrokenStore(), avatar_url=oauth.avatar_url)

        with pytest.raises(UserAlreadyExists):
            await resolver.resolve(identity)


class TestSqlAlchemyUserStore:
    """Tests for the users table store."""

    @pytest.mark.asyncio
    async def test_create_and_find(self, sql_store: SqlAlchemyUserStore):
        """Test a created user can be read by email and id."""
        created = await sql_store.create_user(name="nelly", email="nelly@example.com", image=None)

        assert isinstance(created.id, uuid.UUID)
        assert created.created_at is not None

        by_email = await sql_store.find_user_by_email("nelly@example.com")
        by_id = await sql_store.find_user_by_id(created.id)
        assert by_email.id == created.id
        assert by_id.email == "nelly@example.com"

    @pytest.mark.asyncio
    async def test_missing_user(self, sql_store: SqlAlchemyUserStore):
        """Test lookups for unknown users return None."""
        assert await sql_store.find_user_by_email("nobody@example.com") is None
        assert await sql_store.find_user_by_id(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_duplicate_email(self, sql_store: SqlAlchemyUserStore):
        """Test the unique constraint surfaces as UserAlreadyExists."""
        await sql_store.create_user(name="a", email="dup@example.com", image=None)

        with pytest.raises(UserAlreadyExists) as exc_info:
            await sql_store.create_user(name="b", email="dup@example.com", image=None)
        assert exc_info.value.email == "dup@example.com"

    @pytest.mark.asyncio
    async def test_resolver_over_sql(self, sql_store: SqlAlchemyUserStore, oauth: DiscordOAuth, identity):
        """Test resolution is idempotent against a real table."""
        resolver = IdentityResolver(sql_store, avatar_url=oauth.avatar_url)

        first = await resolver.resolve(identity)
        second = await resolver.resolve(identity)

        assert first.id == second.id
        assert first.name == "nelly"
