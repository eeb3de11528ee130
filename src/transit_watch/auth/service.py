"""Sign-in orchestration.

One sign-in attempt runs strictly in sequence:

    exchange code -> fetch identity -> resolve user -> issue session token

Each step needs the previous step's output, so there is nothing to run
concurrently within an attempt. The first step that raises ends the
attempt and its `AuthError` propagates unchanged, kind included. No step
is retried: codes are single-use and resolution is already idempotent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from transit_watch.auth.discord import DiscordOAuth
from transit_watch.auth.errors import UserNotFound
from transit_watch.auth.resolver import IdentityResolver
from transit_watch.auth.session import SessionTokenCodec
from transit_watch.database.models import User
from transit_watch.database.users import UserStore

logger = logging.getLogger(__name__)


class SignInStage(str, Enum):
    """Stages of one sign-in attempt, in order."""

    EXCHANGING = "exchanging"
    FETCHING = "fetching"
    RESOLVING = "resolving"
    ISSUING = "issuing"


@dataclass
class ExternalAuthRequest:
    """Per-attempt input from the client. Never persisted or logged."""

    authorization_code: str
    pkce_verifier: str
    redirect_uri: str

    def __repr__(self) -> str:
        return f"ExternalAuthRequest(redirect_uri={self.redirect_uri!r})"


@dataclass
class SignInResult:
    user: User
    session_token: str


class SignInService:
    """Compose the Discord client, resolver and session codec."""

    def __init__(
        self,
        oauth: DiscordOAuth,
        store: UserStore,
        codec: SessionTokenCodec,
    ):
        self.oauth = oauth
        self.store = store
        self.codec = codec
        self.resolver = IdentityResolver(store, avatar_url=oauth.avatar_url)

    async def sign_in(self, request: ExternalAuthRequest) -> SignInResult:
        """Sign a user in with a Discord authorization code.

        Raises:
            ProviderRejected: Discord declined the code or the token
            IncompleteIdentity: The Discord profile has no email
        """
        stage = SignInStage.EXCHANGING
        try:
            tokens = await self.oauth.exchange_code(
                request.authorization_code,
                request.pkce_verifier,
                request.redirect_uri,
            )

            stage = SignInStage.FETCHING
            identity = await self.oauth.get_user_info(tokens.access_token)

            stage = SignInStage.RESOLVING
            user = await self.resolver.resolve(identity)

            stage = SignInStage.ISSUING
            session_token = self.codec.issue(user)
        except Exception as e:
            logger.info(f"Sign-in failed while {stage.value}: {e!r}")
            raise

        logger.info(f"User {user.id} signed in")
        return SignInResult(user=user, session_token=session_token)

    async def verify_session(self, session_token: str) -> User:
        """Return the user a session token belongs to.

        Raises:
            Malformed, Tampered, Expired: The token itself is not valid
            UserNotFound: The token is valid but its user no longer exists
        """
        session = self.codec.verify(session_token)

        user = await self.store.find_user_by_id(session.user_id)
        if user is None:
            logger.warning(f"Session for non-existent user: {session.user_id}")
            raise UserNotFound(f"User {session.user_id} no longer exists")

        return user
