"""
auth/service.py -- Registration, login, logout, refresh and API key management.

AuthService composes the store, hasher, token signer, session manager, audit
recorder and identity resolver into the operations the routes call. It knows
nothing about HTTP: inputs are plain values, failures are core.errors
exceptions, and the route layer renders both.

Registration is the one multi-entity write. User, organization, default API
key and the "user.registered" audit entry are inserted on a single
connection inside CredentialStore.transaction(); any failure rolls back all
four, so a partial user/org/key triple is never visible.

The email pre-check before the transaction only spares the caller a bcrypt
round on an obvious duplicate. The UNIQUE constraint on users.email is what
actually guarantees uniqueness under concurrent registrations; its
IntegrityError is reported as the same ConflictError.

Security notes:
  [C1] Login treats unknown email, wrong password and deactivated account
       alike: one UnauthorizedError with one message. The unknown-email path
       still runs a bcrypt comparison (PasswordHasher.verify_dummy) so timing
       does not tell the cases apart either.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy.exc import IntegrityError

from auth.audit import AuditRecorder
from auth.models import ApiKey, LoginResult, Organization, RegistrationResult, User
from auth.passwords import PasswordHasher
from auth.resolver import IdentityResolver
from auth.sessions import SessionManager
from auth.store import CredentialStore, normalize_email
from auth.tokens import TokenSigner, format_api_key, generate_api_key_material
from core.config import Settings
from core.errors import ConflictError, NotFoundError, UnauthorizedError

logger = logging.getLogger("tenantgate.auth")

DEFAULT_API_KEY_NAME = "Default API Key"
DEFAULT_API_KEY_SCOPES = ["usage:write"]

_INVALID_CREDENTIALS = "Invalid email or password"
_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase, collapse each run of non [a-z0-9] into "-", strip edge hyphens.

    "My Org!" -> "my-org". Not guaranteed unique.
    """
    return _SLUG_SEPARATORS.sub("-", name.lower()).strip("-")


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        signer: TokenSigner,
        sessions: SessionManager | None = None,
        audit: AuditRecorder | None = None,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.signer = signer
        self.sessions = sessions or SessionManager(store)
        self.audit = audit or AuditRecorder(store)
        self.resolver = IdentityResolver(store, signer, hasher)

    # ------------------------------------------------------------------
    # Registration / login
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        name: str,
        org_name: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> RegistrationResult:
        """Create user + organization + default API key atomically, then log in.

        The returned api_key_secret is the only copy of the plaintext key.
        Raises ConflictError if the email is taken, ValidationError if the
        password is too long for bcrypt.
        """
        email = normalize_email(email)
        if self.store.get_user_by_email(email) is not None:
            raise ConflictError("Email already registered")

        # bcrypt runs before a connection is checked out of the pool.
        password_hash = self.hasher.hash(password)
        key_id, key_secret = generate_api_key_material()
        secret_hash = self.hasher.hash(key_secret)

        try:
            with self.store.transaction() as conn:
                user = self.store.create_user(
                    User(email=email, name=name, password_hash=password_hash),
                    conn=conn,
                )
                organization = self.store.create_organization(
                    Organization(name=org_name, slug=slugify(org_name), owner_id=user.id),
                    conn=conn,
                )
                api_key = self.store.create_api_key(
                    ApiKey(
                        id=key_id,
                        organization_id=organization.id,
                        name=DEFAULT_API_KEY_NAME,
                        secret_hash=secret_hash,
                        scopes=list(DEFAULT_API_KEY_SCOPES),
                    ),
                    conn=conn,
                )
                self.audit.record(
                    "user.registered",
                    actor_id=user.id,
                    organization_id=organization.id,
                    metadata={"email": user.email, "orgName": org_name},
                    conn=conn,
                )
        except IntegrityError as exc:
            # Lost the race to a concurrent registration of the same email.
            raise ConflictError("Email already registered") from exc

        logger.info("Registered user %s with organization %s", user.id, organization.id)
        session = self.sessions.create(user.id, ip=ip, user_agent=user_agent)
        access_token = self.signer.issue(user.id, user.email)
        return RegistrationResult(
            user=user,
            organization=organization,
            api_key=api_key,
            api_key_secret=format_api_key(key_id, key_secret),
            session=session,
            access_token=access_token,
        )

    def authenticate(self, email: str, password: str) -> User:
        """Check credentials with timing equalization [C1].

        Raises one UnauthorizedError for every failure mode.
        """
        user = self.store.get_user_by_email(email)
        if user is None:
            self.hasher.verify_dummy(password)
            raise UnauthorizedError(_INVALID_CREDENTIALS)
        if not self.hasher.verify(password, user.password_hash):
            raise UnauthorizedError(_INVALID_CREDENTIALS)
        if not user.is_active:
            raise UnauthorizedError(_INVALID_CREDENTIALS)
        return user

    def login(
        self,
        email: str,
        password: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        user = self.authenticate(email, password)
        last_login_at = self.store.update_last_login(user.id)
        user.last_login_at = last_login_at
        user.updated_at = last_login_at
        session = self.sessions.create(user.id, ip=ip, user_agent=user_agent)
        access_token = self.signer.issue(user.id, user.email)
        self.audit.record("user.login", actor_id=user.id, metadata={"email": user.email, "ip": ip})
        return LoginResult(user=user, session=session, access_token=access_token)

    def logout(self, user: User) -> int:
        """Delete every session of the user. Issued access tokens stay valid until exp."""
        revoked = self.sessions.revoke_all(user.id)
        self.audit.record("user.logout", actor_id=user.id)
        return revoked

    def refresh(self, user: User) -> str:
        """Issue a fresh 15-minute token for a user the resolver already accepted."""
        return self.signer.issue(user.id, user.email)

    # ------------------------------------------------------------------
    # Organizations / API keys
    # ------------------------------------------------------------------

    def get_organization(self, organization_id: str) -> Organization:
        organization = self.store.get_organization(organization_id)
        if organization is None:
            raise NotFoundError("Organization not found")
        return organization

    def organization_for(self, user: User) -> Organization:
        organization = self.store.get_organization_by_owner(user.id)
        if organization is None:
            raise NotFoundError("Organization not found")
        return organization

    def create_api_key(
        self,
        user: User,
        name: str,
        scopes: list[str] | None = None,
    ) -> tuple[ApiKey, str]:
        """Create a key for the user's organization. Returns (key, plaintext) -- plaintext once."""
        organization = self.organization_for(user)
        key_id, key_secret = generate_api_key_material()
        api_key = self.store.create_api_key(
            ApiKey(
                id=key_id,
                organization_id=organization.id,
                name=name,
                secret_hash=self.hasher.hash(key_secret),
                scopes=list(scopes) if scopes else list(DEFAULT_API_KEY_SCOPES),
            )
        )
        self.audit.record(
            "api_key.created",
            actor_id=user.id,
            organization_id=organization.id,
            metadata={"keyId": key_id, "name": name},
        )
        return api_key, format_api_key(key_id, key_secret)

    def list_api_keys(self, user: User) -> list[ApiKey]:
        return self.store.list_api_keys(self.organization_for(user).id)

    def revoke_api_key(self, user: User, key_id: str) -> None:
        """Revoke a live key of the user's organization. NotFoundError otherwise."""
        organization = self.organization_for(user)
        if not self.store.revoke_api_key(key_id, organization_id=organization.id):
            raise NotFoundError("API key not found")
        self.audit.record(
            "api_key.revoked",
            actor_id=user.id,
            organization_id=organization.id,
            metadata={"keyId": key_id},
        )


def build_auth_service(settings: Settings, store: CredentialStore) -> AuthService:
    """Wire an AuthService from configuration. The signing key is passed explicitly."""
    return AuthService(
        store=store,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        signer=TokenSigner(settings.secret_key),
    )
