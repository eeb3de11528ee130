"""Authentication routes.

Handles Discord sign-in and session verification.

## Endpoints

1. GET /auth/discord/authorize-url - Build the Discord consent URL
2. POST /auth/discord - Exchange a code for a session (signIn)
3. POST /auth/session/verify - Resolve a session token to its user
4. GET /auth/me - Current user from bearer header or cookie
5. POST /auth/logout - Clear the session cookie

## Session Management

The session token is returned in the response body for API clients and
also set as an HTTP-only cookie for browsers. Logout only clears the
cookie: tokens stay valid until they expire.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from transit_watch.auth.dependencies import (
    get_current_user_optional,
    get_sign_in_service,
)
from transit_watch.auth.service import ExternalAuthRequest, SignInService
from transit_watch.database.models import User

logger = logging.getLogger(__name__)

router = APIRouter()


class DiscordSignInRequest(BaseModel):
    """Sign-in request body."""

    code: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1, alias="redirectUri")
    code_verifier: str = Field(..., min_length=43, max_length=128, alias="codeVerifier")


class VerifySessionRequest(BaseModel):
    session_token: str = Field(..., min_length=1, alias="sessionToken")


class UserResponse(BaseModel):
    """User information response."""

    id: str
    name: str | None
    email: str
    image: str | None

    @classmethod
    def from_user(cls, user: User) -> UserResponse:
        return cls(id=str(user.id), name=user.name, email=user.email, image=user.image)


class SignInResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user: UserResponse
    session_token: str = Field(alias="sessionToken")


class SessionResponse(BaseModel):
    user: UserResponse


class AuthStatusResponse(BaseModel):
    """Authentication status response."""

    authenticated: bool
    user: UserResponse | None = None


class AuthorizeUrlResponse(BaseModel):
    url: str


@router.get("/discord/authorize-url", response_model=AuthorizeUrlResponse)
async def discord_authorize_url(
    redirect_uri: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    code_challenge: str = Query(..., min_length=43, max_length=128),
    service: SignInService = Depends(get_sign_in_service),
) -> AuthorizeUrlResponse:
    """Build the Discord consent URL for a client-generated PKCE challenge."""
    url = service.oauth.get_authorization_url(
        redirect_uri=redirect_uri,
        state=state,
        code_challenge=code_challenge,
    )
    return AuthorizeUrlResponse(url=url)


@router.post("/discord", response_model=SignInResponse)
async def discord_sign_in(
    body: DiscordSignInRequest,
    request: Request,
    response: Response,
    service: SignInService = Depends(get_sign_in_service),
) -> SignInResponse:
    """Exchange a Discord authorization code for a session.

    Failures are raised as classified `AuthError`s and rendered by the
    application's handler.
    """
    settings = request.app.state.settings

    result = await service.sign_in(
        ExternalAuthRequest(
            authorization_code=body.code,
            pkce_verifier=body.code_verifier,
            redirect_uri=body.redirect_uri,
        )
    )

    response.set_cookie(
        key=settings.session_cookie_name,
        value=result.session_token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )

    return SignInResponse(
        user=UserResponse.from_user(result.user),
        session_token=result.session_token,
    )


@router.post("/session/verify", response_model=SessionResponse)
async def verify_session(
    body: VerifySessionRequest,
    service: SignInService = Depends(get_sign_in_service),
) -> SessionResponse:
    """Return the user a session token belongs to."""
    user = await service.verify_session(body.session_token)
    return SessionResponse(user=UserResponse.from_user(user))


@router.get("/me", response_model=AuthStatusResponse)
async def get_auth_status(
    user: User | None = Depends(get_current_user_optional),
) -> AuthStatusResponse:
    """Get the current authentication status and user info."""
    if user:
        return AuthStatusResponse(authenticated=True, user=UserResponse.from_user(user))

    return AuthStatusResponse(authenticated=False)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    user: User | None = Depends(get_current_user_optional),
) -> dict:
    """Log out the current user.

    Clears the session cookie. The token itself is not revoked.
    """
    settings = request.app.state.settings

    if user:
        logger.info(f"User {user.id} logged out")

    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )

    return {"success": True}
