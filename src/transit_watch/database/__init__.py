"""Database module for the auth subsystem.

This module provides:
- SQLAlchemy async database connection
- The User model
- The UserStore used to resolve external identities
"""

from transit_watch.database.connection import (
    init_db,
    close_db,
    create_tables,
)
from transit_watch.database.models import (
    Base,
    User,
)
from transit_watch.database.users import (
    SqlAlchemyUserStore,
    UserAlreadyExists,
    UserStore,
)

__all__ = [
    # Connection
    "init_db",
    "close_db",
    "create_tables",
    # Models
    "Base",
    "User",
    # Store
    "SqlAlchemyUserStore",
    "UserAlreadyExists",
    "UserStore",
]
