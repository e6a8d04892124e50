"""
API request and response models for tenantgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format:
  Keys are camelCase (orgName, apiKeySecret, sessionId, isActive, ...).
  Every success body is {"success": true, "data": <payload>} and every
  failure body is {"success": false, "error": {"code", "message"}}.

Sanitization: UserOut and ApiKeyOut have no field for password_hash or
secret_hash, so those can never be serialized by accident.
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import ApiKey, Organization, User

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class CamelModel(BaseModel):
    """Base for wire models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _validate_email(value: str) -> str:
    value = value.strip()
    if len(value) > 255 or not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email address")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(CamelModel):
    """Request body for POST /api/v1/auth/register."""

    email: str
    password: str = Field(min_length=8, max_length=100)
    name: str = Field(min_length=1, max_length=100)
    org_name: str = Field(min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _validate_email(value)


class LoginRequest(CamelModel):
    """Request body for POST /api/v1/auth/login."""

    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _validate_email(value)


class ApiKeyCreate(CamelModel):
    """Request body for POST /api/v1/api-keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    scopes: list[str] = Field(default_factory=list, max_length=20)


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


class UserOut(CamelModel):
    id: str
    email: str
    name: Optional[str]
    is_active: bool
    created_at: str
    last_login_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            is_active=user.is_active,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class OrganizationOut(CamelModel):
    id: str
    name: str
    slug: str
    owner_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    @classmethod
    def from_organization(cls, org: Organization) -> "OrganizationOut":
        return cls(
            id=org.id,
            name=org.name,
            slug=org.slug,
            owner_id=org.owner_id,
            metadata=org.metadata,
            created_at=org.created_at,
        )


class ApiKeyOut(CamelModel):
    id: str
    organization_id: str
    name: str
    scopes: list[str]
    created_at: str
    revoked_at: Optional[str] = None

    @classmethod
    def from_api_key(cls, key: ApiKey) -> "ApiKeyOut":
        return cls(
            id=key.id,
            organization_id=key.organization_id,
            name=key.name,
            scopes=key.scopes,
            created_at=key.created_at,
            revoked_at=key.revoked_at,
        )


class ApiKeyCreatedOut(CamelModel):
    """Returned once at creation. secret is never retrievable again."""

    api_key: ApiKeyOut
    secret: str


class RegisterOut(CamelModel):
    user: UserOut
    organization: OrganizationOut
    api_key_secret: str  # only shown once
    session_id: str


class LoginOut(CamelModel):
    user: UserOut
    access_token: str
    session_id: str


class RefreshOut(CamelModel):
    access_token: str


class MessageOut(CamelModel):
    message: str


class HealthOut(CamelModel):
    status: str = "ok"
    version: str
    timestamp: str


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: ErrorDetail


def success_body(data: Any) -> dict:
    """Wrap a payload model (or list of them) in the success envelope."""
    if isinstance(data, list):
        payload = [item.model_dump(by_alias=True) for item in data]
    else:
        payload = data.model_dump(by_alias=True)
    return {"success": True, "data": payload}
