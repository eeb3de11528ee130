"""Resolve an external identity to a local user.

Lookup is by email. An existing user is returned unchanged; name and image
are not refreshed from the provider on later sign-ins.

## Concurrent first sign-in

Two requests for a brand-new email can both miss the lookup and both try
to insert. The `users.email` unique constraint lets exactly one insert
through; the loser gets `UserAlreadyExists` and reads the winner's row.
No lock is held, so the worst case is one wasted insert.
"""

from __future__ import annotations

import logging
from typing import Callable

from transit_watch.auth.discord import DiscordIdentity
from transit_watch.database.models import User
from transit_watch.database.users import UserAlreadyExists, UserStore

logger = logging.getLogger(__name__)

AvatarUrlBuilder = Callable[[DiscordIdentity], str | None]


class IdentityResolver:
    """Find-or-create the local user for an external identity."""

    def __init__(self, store: UserStore, avatar_url: AvatarUrlBuilder):
        self.store = store
        self.avatar_url = avatar_url

    async def resolve(self, identity: DiscordIdentity) -> User:
        """Return the user for `identity.email`, creating it if absent.

        Idempotent: repeated or concurrent calls for the same email return
        the same user id.
        """
        user = await self.store.find_user_by_email(identity.email)
        if user is not None:
            logger.debug(f"Existing user found: {user.id}")
            return user

        try:
            user = await self.store.create_user(
                name=identity.username,
                email=identity.email,
                image=self.avatar_url(identity),
            )
        except UserAlreadyExists:
            user = await self.store.find_user_by_email(identity.email)
            if user is None:
                # Uniqueness violation but no row visible: let it surface
                raise
            logger.info(f"Concurrent sign-in created user first, reusing {user.id}")
            return user

        logger.info(f"New user created: {user.id}")
        return user
