"""Failure taxonomy for sign-in and session verification.

Every failure raised by the auth package is an `AuthError` carrying a
`FailureKind`. Callers branch on the kind (or the subclass) to decide
between "ask the user to sign in again" and "log and alert":

| kind                  | raised by                       | typical HTTP |
|-----------------------|---------------------------------|--------------|
| provider_rejected     | token exchange, identity fetch  | 400          |
| incomplete_identity   | identity fetch                  | 400          |
| malformed             | session verify                  | 401          |
| tampered              | session verify                  | 401          |
| expired               | session verify                  | 401          |
| user_not_found        | session verify (user lookup)    | 401          |
| configuration_error   | startup only                    | 500          |

Nothing in the auth package retries on any of these.
"""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Classification of auth failures."""

    PROVIDER_REJECTED = "provider_rejected"
    INCOMPLETE_IDENTITY = "incomplete_identity"
    MALFORMED = "malformed"
    TAMPERED = "tampered"
    EXPIRED = "expired"
    USER_NOT_FOUND = "user_not_found"
    CONFIGURATION_ERROR = "configuration_error"


class AuthError(Exception):
    """Base exception for all classified auth failures."""

    kind: FailureKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class ProviderRejected(AuthError):
    """The identity provider declined the code exchange or token.

    `description` is the provider's own explanation, kept verbatim so
    operators can diagnose PKCE or redirect URI mismatches.
    """

    kind = FailureKind.PROVIDER_REJECTED

    def __init__(
        self,
        description: str,
        error: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(description)
        self.description = description
        self.error = error
        self.status_code = status_code


class IncompleteIdentity(AuthError):
    """The provider profile lacks a field required to resolve a local user."""

    kind = FailureKind.INCOMPLETE_IDENTITY

    def __init__(self, message: str, missing: str = "email"):
        super().__init__(message)
        self.missing = missing


class SessionTokenError(AuthError):
    """Base class for session token verification failures."""


class Malformed(SessionTokenError):
    kind = FailureKind.MALFORMED


class Tampered(SessionTokenError):
    kind = FailureKind.TAMPERED


class Expired(SessionTokenError):
    kind = FailureKind.EXPIRED


class UserNotFound(AuthError):
    """A validly signed session refers to a user that no longer exists."""

    kind = FailureKind.USER_NOT_FOUND


class ConfigurationError(AuthError):
    """Required configuration is missing or invalid. Fatal at startup."""

    kind = FailureKind.CONFIGURATION_ERROR

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []
