"""
auth/resolver.py -- Turn request credentials into a Principal.

Three strategies are tried in strict order; the first match wins:
  1. Session cookie   -- value verified as an access token; resolves a user.
  2. Authorization JWT -- header token verified as an access token; resolves a user.
  3. Authorization API key -- "{public_id}.{secret}"; resolves an organization.

Strategies 2 and 3 read the same header value. Trying the JWT first lets one
endpoint accept either credential without the caller saying which it sent.

A token is only as good as the user it names: if the user is gone or
deactivated, the strategy does not match and resolution falls through.
API-key resolution never yields a user -- only the owning organization.

Each strategy returns a Principal or None. There is no class hierarchy of
authenticators; adding a scheme means adding a method to _strategies.
"""

from __future__ import annotations

import logging

from auth.models import Principal, RequestCredentials, User
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from auth.tokens import TokenSigner, split_api_key
from core.errors import UnauthorizedError

logger = logging.getLogger("tenantgate.auth")


class IdentityResolver:
    def __init__(self, store: CredentialStore, signer: TokenSigner, hasher: PasswordHasher) -> None:
        self._store = store
        self._signer = signer
        self._hasher = hasher
        self._strategies = (self._from_cookie, self._from_bearer_token, self._from_api_key)

    def resolve(self, credentials: RequestCredentials) -> Principal | None:
        """Return the first Principal any strategy yields, or None (unauthenticated)."""
        for strategy in self._strategies:
            principal = strategy(credentials)
            if principal is not None:
                return principal
        return None

    def require_user(self, credentials: RequestCredentials) -> User:
        """Return the authenticated user or raise UnauthorizedError."""
        principal = self.resolve(credentials)
        if principal is None or not principal.is_user:
            raise UnauthorizedError("Authentication required")
        return principal.user

    def require_organization(self, credentials: RequestCredentials) -> str:
        """Return the organization id of an API-key principal or raise UnauthorizedError.

        A valid user token does not satisfy this, even one whose owner has
        an organization.
        """
        principal = self.resolve(credentials)
        if principal is None or not principal.is_organization or principal.auth_method != "apikey":
            raise UnauthorizedError("Valid API key required")
        return principal.organization_id

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _from_cookie(self, credentials: RequestCredentials) -> Principal | None:
        if not credentials.cookie_token:
            return None
        return self._user_from_token(credentials.cookie_token)

    def _from_bearer_token(self, credentials: RequestCredentials) -> Principal | None:
        if not credentials.authorization_token:
            return None
        return self._user_from_token(credentials.authorization_token)

    def _from_api_key(self, credentials: RequestCredentials) -> Principal | None:
        if not credentials.authorization_token:
            return None
        parts = split_api_key(credentials.authorization_token)
        if parts is None:
            return None
        key_id, secret = parts
        api_key = self._store.get_active_api_key(key_id)
        if api_key is None or api_key.is_revoked:
            return None
        if not self._hasher.verify(secret, api_key.secret_hash):
            logger.info("API key secret mismatch for key %s", key_id)
            return None
        return Principal(
            kind="organization",
            auth_method="apikey",
            organization_id=api_key.organization_id,
            api_key_id=api_key.id,
            scopes=list(api_key.scopes),
        )

    def _user_from_token(self, token: str) -> Principal | None:
        claims = self._signer.verify(token)
        if claims is None:
            return None
        user = self._store.get_user_by_id(claims.sub)
        if user is None or not user.is_active:
            return None
        return Principal(kind="user", auth_method="jwt", user=user)
