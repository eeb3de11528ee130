"""Session management using signed JWT tokens.

Sessions are stateless: a token is valid if its signature checks out and
it has not expired. There is no server-side session table and therefore
no revocation before expiry. A deployment that needs revocation must add
a denylist in front of `verify`, not change what `verify` means.

## Token Structure

```json
{
  "sub": "user-uuid",
  "email": "user@example.com",
  "iat": 1234567890,
  "exp": 1237159890,
  "type": "session"
}
```

## Verification failures

- `Malformed`: not a JWT, or claims missing / of the wrong type
- `Tampered`: signature (or algorithm) does not match our secret
- `Expired`: signature is valid but `now >= exp`

Expiry is checked against the codec clock, after the signature.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode

from transit_watch.auth.errors import Expired, Malformed, Tampered

if TYPE_CHECKING:
    from transit_watch.config import Settings
    from transit_watch.database.models import User

logger = logging.getLogger(__name__)

# JWT configuration
ALGORITHM = "HS256"
TOKEN_TYPE = "session"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionData:
    """Data stored in the session token."""

    user_id: uuid.UUID
    email: str
    issued_at: datetime
    expires_at: datetime


class SessionTokenCodec:
    """Issue and verify session tokens.

    Example:
        ```python
        codec = SessionTokenCodec.from_settings(settings)

        token = codec.issue(user)
        session = codec.verify(token)
        ```
    """

    def __init__(
        self,
        secret_key: str,
        ttl: timedelta,
        clock: Clock = utcnow,
    ):
        if not secret_key:
            raise ValueError("secret_key is required")
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self._secret_key = secret_key
        self.ttl = ttl
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utcnow) -> SessionTokenCodec:
        return cls(
            secret_key=settings.secret_key,
            ttl=timedelta(seconds=settings.session_ttl_seconds),
            clock=clock,
        )

    def issue(self, user: User) -> str:
        """Create a signed session token for a user.

        Args:
            user: The local user

        Returns:
            Signed JWT token string
        """
        now = self.clock()
        expires_at = now + self.ttl

        payload = {
            "sub": str(user.id),
            "email": user.email,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "type": TOKEN_TYPE,
        }

        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> SessionData:
        """Verify and decode a session token.

        Args:
            token: The JWT token string

        Returns:
            SessionData for a valid token

        Raises:
            Malformed: Token cannot be parsed or has invalid claims
            Tampered: Signature does not verify
            Expired: Token is authentic but past its expiry
        """
        if not isinstance(token, str) or not token:
            raise Malformed("Session token is empty")

        # Structure first, so garbage is never reported as tampering
        try:
            jwt.get_unverified_header(token)
            claims = jwt.get_unverified_claims(token)
        except JWTError as e:
            logger.debug(f"Session token is malformed: {e}")
            raise Malformed("Session token is not a valid JWT") from e

        session = self._parse_claims(claims)

        if not _is_canonical_signature(token):
            logger.debug("Session token signature is not canonically encoded")
            raise Tampered("Session token signature is invalid")

        try:
            jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.debug(f"Session token signature rejected: {e}")
            raise Tampered("Session token signature is invalid") from e

        if self.clock() >= session.expires_at:
            logger.debug(f"Session token expired for user {session.user_id}")
            raise Expired("Session token has expired")

        return session

    @staticmethod
    def _parse_claims(claims: dict) -> SessionData:
        if claims.get("type") != TOKEN_TYPE:
            raise Malformed("Not a session token")

        try:
            user_id = uuid.UUID(claims["sub"])
            email = claims["email"]
            iat = claims["iat"]
            exp = claims["exp"]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise Malformed("Session token claims are incomplete") from e

        if not isinstance(email, str) or not email:
            raise Malformed("Session token email claim is invalid")
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in (iat, exp)):
            raise Malformed("Session token timestamps are invalid")

        return SessionData(
            user_id=user_id,
            email=email,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )


def _is_canonical_signature(token: str) -> bool:
    """Whether the signature segment re-encodes to itself.

    Decoding ignores the unused low bits of the final character.
    """
    signature = token.rsplit(".", 1)[-1].encode("ascii", errors="replace")
    try:
        return base64url_encode(base64url_decode(signature)) == signature
    except ValueError:
        return False
