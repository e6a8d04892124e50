"""
api/routes/v1/auth.py -- Registration, login, logout and token refresh.

Routes:
  POST /api/v1/auth/register  -- create user + org + default API key; sets cookie
  POST /api/v1/auth/login     -- password login; sets cookie
  POST /api/v1/auth/logout    -- requires auth; revokes all sessions, clears cookie
  POST /api/v1/auth/refresh   -- requires auth; fresh 15-minute token + cookie

Security:
  AuthService.authenticate() provides timing equalization and one error for
  every credential failure ([C1] in auth/service.py); routes never inspect
  users directly.
  Cache-Control: no-store is set on every response that carries a token or key.
  Logout does not invalidate tokens already issued; they expire on their own.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import LoginOut, LoginRequest, MessageOut, OrganizationOut, RefreshOut, RegisterOut, RegisterRequest, UserOut, success_body
from auth.dependencies import get_auth_service, require_auth
from auth.models import User
from auth.tokens import clear_auth_cookie, set_auth_cookie

router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Register a user with their organization and default API key.

    The plaintext API key (apiKeySecret) is in this response and nowhere
    else -- only its hash is stored.
    """
    service = get_auth_service(request)
    result = service.register(
        email=body.email,
        password=body.password,
        name=body.name,
        org_name=body.org_name,
        ip=_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    resp = JSONResponse(
        status_code=201,
        content=success_body(
            RegisterOut(
                user=UserOut.from_user(result.user),
                organization=OrganizationOut.from_organization(result.organization),
                api_key_secret=result.api_key_secret,
                session_id=result.session.id,
            )
        ),
    )
    _set_cookie(request, resp, result.access_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; open a session and set the cookie.

    Unknown email, wrong password and disabled account all return the same
    401 body.
    """
    service = get_auth_service(request)
    result = service.login(
        email=body.email,
        password=body.password,
        ip=_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    resp = JSONResponse(
        status_code=200,
        content=success_body(
            LoginOut(
                user=UserOut.from_user(result.user),
                access_token=result.access_token,
                session_id=result.session.id,
            )
        ),
    )
    _set_cookie(request, resp, result.access_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(request: Request, current_user: User = Depends(require_auth)) -> JSONResponse:
    """Revoke every session of the caller and clear the cookie."""
    get_auth_service(request).logout(current_user)
    resp = JSONResponse(content=success_body(MessageOut(message="Logged out successfully")))
    settings = request.app.state.settings
    clear_auth_cookie(resp, settings.session_cookie_name, settings.secure_cookies)
    return resp


@router.post("/auth/refresh")
def refresh(request: Request, current_user: User = Depends(require_auth)) -> JSONResponse:
    """Issue a new access token.

    The caller must already resolve through the normal auth chain, so an
    expired token cannot refresh itself.
    """
    token = get_auth_service(request).refresh(current_user)
    resp = JSONResponse(content=success_body(RefreshOut(access_token=token)))
    _set_cookie(request, resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_cookie(request: Request, response: JSONResponse, token: str) -> None:
    settings = request.app.state.settings
    set_auth_cookie(response, token, settings.session_cookie_name, settings.secure_cookies)


def _client_ip(request: Request) -> str | None:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None
