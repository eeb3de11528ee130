"""FastAPI dependencies for authentication.

These dependencies can be used in route handlers to require a session and
get the current user. The session token is read from an
`Authorization: Bearer <token>` header, falling back to the session cookie.

## Usage

```python
from fastapi import Depends
from transit_watch.auth import get_current_user
from transit_watch.database import User

@router.post("/reports")
async def create_report(user: User = Depends(get_current_user)):
    ...
```

Only "does a valid session exist" is checked here; permissions are the
caller's business.
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from transit_watch.auth.errors import AuthError
from transit_watch.auth.service import SignInService
from transit_watch.database.models import User

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_sign_in_service(request: Request) -> SignInService:
    """Get the service built at startup."""
    return request.app.state.sign_in_service


async def get_session_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    """Extract the session token from the bearer header or cookie."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials

    cookie_name = request.app.state.settings.session_cookie_name
    return request.cookies.get(cookie_name) or None


async def get_current_user_optional(
    token: str | None = Depends(get_session_token),
    service: SignInService = Depends(get_sign_in_service),
) -> User | None:
    """Get the current user if signed in, or None.

    Use this for routes that work with or without authentication.
    """
    if token is None:
        return None

    try:
        return await service.verify_session(token)
    except AuthError as e:
        logger.debug(f"Ignoring invalid session: {e.kind.value}")
        return None


async def get_current_user(
    token: str | None = Depends(get_session_token),
    service: SignInService = Depends(get_sign_in_service),
) -> User:
    """Get the current authenticated user.

    Raises 401 if there is no token. An invalid token raises its classified
    `AuthError`, which the application maps to a 401 carrying the kind.
    """
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return await service.verify_session(token)
