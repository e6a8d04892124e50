"""
auth/tokens.py -- Access tokens, API key material, and the session cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (user id), email, iat and exp,
       and live exactly 15 minutes. verify() returns None on any failure --
       bad signature, malformed token, missing claims and expiry all look the
       same to the caller, so nothing leaks about *why* a token failed.
       Tokens are stateless: there is no revocation list. Logging out deletes
       sessions and clears the cookie, but a copied token stays valid until
       its exp passes.

  Signing key: passed into TokenSigner explicitly (from Settings.secret_key).
       There is no module-level fallback key; an empty key is rejected at
       construction time.

  API keys: presented as "{public_id}.{secret}". public_id is the lookup
       handle (stored in clear); only bcrypt(secret) is persisted. Neither part
       ever contains ".", so the first "." is always the separator.

  Cookie: the access token rides in one httpOnly, SameSite=Lax cookie whose
       max-age matches the token lifetime, so both expire together.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import AccessTokenClaims

ACCESS_TOKEN_TTL = timedelta(minutes=15)
API_KEY_SEPARATOR = "."

_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


class TokenSigner:
    """Issues and verifies short-lived access tokens.

    clock is injectable so tests can mint tokens "in the past" and watch them
    expire without sleeping.
    """

    def __init__(self, secret_key: str, clock: Callable[[], datetime] = _utcnow) -> None:
        if not secret_key:
            raise ValueError("TokenSigner requires a non-empty secret key")
        self._secret_key = secret_key
        self._clock = clock

    def issue(self, subject_id: str, email: str) -> str:
        """Encode a signed JWT for subject_id, valid for ACCESS_TOKEN_TTL."""
        issued_at = self._clock()
        payload = {
            "sub": subject_id,
            "email": email,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + ACCESS_TOKEN_TTL).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> AccessTokenClaims | None:
        """Decode and verify a JWT. Returns the claims or None on any failure."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        sub = payload.get("sub")
        email = payload.get("email")
        if not isinstance(sub, str) or not isinstance(email, str):
            return None
        return AccessTokenClaims(sub=sub, email=email, iat=int(payload.get("iat", 0)), exp=int(payload["exp"]))


# ---------------------------------------------------------------------------
# API key material
# ---------------------------------------------------------------------------


def generate_api_key_material() -> tuple[str, str]:
    """Return (public_id, secret).

    token_urlsafe draws from [A-Za-z0-9_-], so neither part contains the
    separator. 12 bytes -> 16-char id; 24 bytes -> 32-char secret (192 bits).
    """
    return secrets.token_urlsafe(12), secrets.token_urlsafe(24)


def format_api_key(public_id: str, secret: str) -> str:
    return f"{public_id}{API_KEY_SEPARATOR}{secret}"


def split_api_key(raw_key: str) -> tuple[str, str] | None:
    """Split "{public_id}.{secret}" at the first separator. None if malformed."""
    public_id, sep, secret = raw_key.partition(API_KEY_SEPARATOR)
    if not sep or not public_id or not secret:
        return None
    return public_id, secret


# ---------------------------------------------------------------------------
# Authorization header
# ---------------------------------------------------------------------------

_ACCEPTED_SCHEMES = {"bearer", "apikey"}


def parse_authorization(header: str | None) -> str | None:
    """Return the token from "<scheme> <token>", or None.

    The header must have exactly two space-separated parts and the scheme
    must be "bearer" or "apikey" (case-insensitive). The token may be an
    access token or an API key -- the resolver decides which.
    """
    if not header:
        return None
    parts = header.split(" ")
    if len(parts) != 2:
        return None
    scheme, token = parts
    if scheme.lower() not in _ACCEPTED_SCHEMES or not token:
        return None
    return token


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, cookie_name: str, secure: bool) -> None:
    """Write the access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": sent on same-site requests and top-level GET navigations,
        not on cross-site POST.
    secure: HTTPS-only; on by default outside debug mode.
    max_age: matches ACCESS_TOKEN_TTL so cookie and token expire together.
    """
    response.set_cookie(
        cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=int(ACCESS_TOKEN_TTL.total_seconds()),
        path="/",
    )


def clear_auth_cookie(response, cookie_name: str, secure: bool) -> None:
    """Overwrite the auth cookie with an empty value and max-age 0."""
    response.set_cookie(
        cookie_name,
        value="",
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=0,
        path="/",
    )
