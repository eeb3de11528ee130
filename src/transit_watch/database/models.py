"""Database models for the auth subsystem.

Stations, reports and favorites live in their own tables owned by other
routers; this package only reads and writes `users`.

## Schema Overview

```
users
├── id (uuid, pk)
├── email (unique)  - natural key used to resolve external identities
├── name
├── image           - external avatar URL
└── created_at
```
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""


class User(Base):
    """User account model.

    Users are created on their first Discord sign-in. The email is the
    join key between an external identity and a local user; the unique
    constraint on it guarantees one row per email even when two first-time
    sign-ins race.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    image: Mapped[str | None] = mapped_column(String(512))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"
