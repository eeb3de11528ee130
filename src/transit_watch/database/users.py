"""User persistence used by the auth subsystem.

The auth code depends only on the `UserStore` protocol:

- `find_user_by_email(email)`
- `find_user_by_id(user_id)`
- `create_user(name=..., email=..., image=...)`

`create_user` raises `UserAlreadyExists` when the email uniqueness
constraint rejects the insert, which lets the resolver recover from a
lost creation race by reading the winning row.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transit_watch.database.models import User

logger = logging.getLogger(__name__)


class UserAlreadyExists(Exception):
    """A user with this email already exists."""

    def __init__(self, email: str):
        super().__init__(f"User already exists for email {email}")
        self.email = email


class UserStore(Protocol):
    async def find_user_by_email(self, email: str) -> User | None: ...

    async def find_user_by_id(self, user_id: uuid.UUID) -> User | None: ...

    async def create_user(
        self, *, name: str | None, email: str, image: str | None
    ) -> User: ...


class SqlAlchemyUserStore:
    """UserStore backed by the `users` table.

    Each call runs in its own session so concurrent sign-ins never share
    a transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_user_by_email(self, email: str) -> User | None:
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.email == email))
            return result.scalar_one_or_none()

    async def find_user_by_id(self, user_id: uuid.UUID) -> User | None:
        async with self._session_factory() as session:
            return await session.get(User, user_id)

    async def create_user(
        self, *, name: str | None, email: str, image: str | None
    ) -> User:
        async with self._session_factory() as session:
            user = User(name=name, email=email, image=image)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.info(f"Insert for {email} lost to an existing row")
                raise UserAlreadyExists(email) from e

            await session.refresh(user)
            return user
