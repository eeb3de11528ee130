"""Authentication module for Transit Watch.

Provides Discord sign-in and stateless session tokens.

## Sign-in Flow

1. Browser generates a PKCE verifier and sends the user to Discord
2. Discord redirects back with an authorization code
3. Exchange code + verifier for an access token
4. Fetch the Discord profile with the access token
5. Find or create the local user by email
6. Issue a signed session token

## Security

- Session tokens are HS256 JWTs signed with SECRET_KEY
- Sessions are not stored server-side and cannot be revoked before expiry
- Codes, verifiers and tokens are never logged
"""

from transit_watch.auth.errors import (
    AuthError,
    ConfigurationError,
    Expired,
    FailureKind,
    IncompleteIdentity,
    Malformed,
    ProviderRejected,
    SessionTokenError,
    Tampered,
    UserNotFound,
)
from transit_watch.auth.discord import (
    DiscordIdentity,
    DiscordOAuth,
    DiscordTokens,
    create_code_challenge,
    generate_code_verifier,
)
from transit_watch.auth.session import (
    SessionData,
    SessionTokenCodec,
)
from transit_watch.auth.resolver import IdentityResolver
from transit_watch.auth.service import (
    ExternalAuthRequest,
    SignInResult,
    SignInService,
)
from transit_watch.auth.dependencies import (
    get_current_user,
    get_current_user_optional,
)

__all__ = [
    "AuthError",
    "ConfigurationError",
    "Expired",
    "FailureKind",
    "IncompleteIdentity",
    "Malformed",
    "ProviderRejected",
    "SessionTokenError",
    "Tampered",
    "UserNotFound",
    "DiscordIdentity",
    "DiscordOAuth",
    "DiscordTokens",
    "create_code_challenge",
    "generate_code_verifier",
    "SessionData",
    "SessionTokenCodec",
    "IdentityResolver",
    "ExternalAuthRequest",
    "SignInResult",
    "SignInService",
    "get_current_user",
    "get_current_user_optional",
]
