"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store, resolver and service do the work. API DTOs live in
api/models.py and are mapped from these at the route layer.

Timestamps are ISO 8601 strings in UTC with fixed microsecond precision, so
the store can compare them lexicographically.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A person who can log in.

    email is always stored lowercase -- lookups normalize before querying.
    password_hash is written once at registration and never serialized to
    callers; api/models.UserOut omits it.
    """

    email: str
    name: str
    password_hash: str
    id: str = ""
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""
    last_login_at: str | None = None


@dataclass
class Organization:
    """A tenant. Exactly one is created per registration, owned by the new user."""

    name: str
    slug: str
    owner_id: str
    id: str = ""
    metadata: dict = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""


@dataclass
class ApiKey:
    """A long-lived organization credential.

    The caller is handed "{id}.{secret}" exactly once. Only bcrypt(secret) is
    persisted, so the full key is unrecoverable after creation. id doubles as
    the public lookup handle.

    revoked_at set -> the key never authenticates again. Rows are not deleted.
    """

    id: str
    organization_id: str
    name: str
    secret_hash: str
    scopes: list[str] = field(default_factory=list)
    created_at: str = ""
    revoked_at: str | None = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None


@dataclass
class Session:
    """Server-side record of a login, independent of any access token."""

    user_id: str
    expires_at: str
    id: str = ""
    created_at: str = ""
    ip: str | None = None
    user_agent: str | None = None


@dataclass
class AuditLog:
    """Append-only record of a security-relevant action (e.g. "user.login")."""

    action: str
    actor_id: str | None = None
    organization_id: str | None = None
    metadata: dict = field(default_factory=dict)
    id: str = ""
    created_at: str = ""


@dataclass(frozen=True)
class AccessTokenClaims:
    """Verified claims of an access token. Never persisted."""

    sub: str  # user id
    email: str
    iat: int
    exp: int


@dataclass
class Principal:
    """The resolved identity of a request: a user or an organization, never both.

    kind="user"          -- resolved from an access token (cookie or header).
    kind="organization"  -- resolved from an API key; api_key_id and scopes set.
    """

    kind: str  # "user" | "organization"
    auth_method: str  # "jwt" | "apikey"
    user: User | None = None
    organization_id: str | None = None
    api_key_id: str | None = None
    scopes: list[str] = field(default_factory=list)

    @property
    def is_user(self) -> bool:
        return self.kind == "user" and self.user is not None

    @property
    def is_organization(self) -> bool:
        return self.kind == "organization" and self.organization_id is not None


@dataclass
class RequestCredentials:
    """Credential material extracted from one inbound request.

    cookie_token is the raw session cookie value; authorization_token is the
    token half of a well-formed "<bearer|apikey> <token>" header.
    """

    cookie_token: str | None = None
    authorization_token: str | None = None


@dataclass
class RegistrationResult:
    user: User
    organization: Organization
    api_key: ApiKey
    api_key_secret: str  # plaintext "{id}.{secret}" -- shown once
    session: Session
    access_token: str


@dataclass
class LoginResult:
    user: User
    session: Session
    access_token: str
