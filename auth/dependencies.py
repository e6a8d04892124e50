"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Credential material is pulled from the request here and handed to the
IdentityResolver (auth/resolver.py), which owns the priority order:
  1. Session cookie (Settings.session_cookie_name) -- set by login/register.
  2. Authorization: Bearer|ApiKey <access token>.
  3. Authorization: Bearer|ApiKey <public_id>.<secret> -- organization API key.

require_auth() demands a user principal; require_api_key() demands an
organization principal that came from an API key. Both raise
UnauthorizedError, which api/main.py renders as a 401 envelope.

auth/dependencies.py may import from fastapi because this module is part of
the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import RequestCredentials, User
from auth.service import AuthService
from auth.tokens import parse_authorization


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_credentials(request: Request) -> RequestCredentials:
    cookie_name = request.app.state.settings.session_cookie_name
    return RequestCredentials(
        cookie_token=request.cookies.get(cookie_name) or None,
        authorization_token=parse_authorization(request.headers.get("Authorization")),
    )


def require_auth(request: Request) -> User:
    """Require a user principal. Raises UnauthorizedError otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(require_auth)): ...
    """
    return get_auth_service(request).resolver.require_user(get_credentials(request))


def require_api_key(request: Request) -> str:
    """Require an API-key principal and return its organization id.

    A valid user token does not satisfy this dependency.
    """
    return get_auth_service(request).resolver.require_organization(get_credentials(request))
