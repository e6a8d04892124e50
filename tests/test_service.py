"""
tests/test_service.py -- Unit tests for auth/service.py.

Covers:
  - register(): user + org + default key + audit row, all-or-nothing
  - duplicate email (any case) -> ConflictError, no new rows, including the
    concurrent-registration path where only the UNIQUE constraint catches it
  - login: case-insensitive email, one message for every failure, last_login stamp
  - a failed login audit write does not fail the login
  - logout revokes sessions; refresh issues a later-expiring token
  - API key create / list / revoke, including cross-tenant isolation
  - slugify()
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from auth.models import RegistrationResult, RequestCredentials
from auth.service import DEFAULT_API_KEY_NAME, AuthService, slugify
from auth.store import CredentialStore
from auth.tokens import TokenSigner
from core.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError

PASSWORD = "correct-horse-9"


def _count(store: CredentialStore, table: str) -> int:
    with store.engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()


class TestSlugify:
    """Organization names map to lowercase hyphenated slugs."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("My Org", "my-org"),
            ("My Org!", "my-org"),
            ("  Acme -- Corp  ", "acme-corp"),
            ("ALLCAPS123", "allcaps123"),
            ("!!!", ""),
        ],
    )
    def test_slugify(self, name: str, expected: str) -> None:
        """Runs of non-alphanumerics collapse to one hyphen; edge hyphens are stripped."""
        assert slugify(name) == expected


class TestRegister:
    """register() creates the user, organization, default key and audit row together."""

    def test_creates_user_org_and_key(self, service: AuthService, registered: RegistrationResult) -> None:
        """The organization is owned by the new user and holds the default key."""
        assert registered.user.email == "alice@example.com"
        assert registered.organization.owner_id == registered.user.id
        assert registered.organization.slug == "acme-corp"
        assert registered.api_key.organization_id == registered.organization.id
        assert registered.api_key.name == DEFAULT_API_KEY_NAME
        assert registered.api_key.scopes == ["usage:write"]

    def test_plaintext_key_is_not_stored(self, service: AuthService, registered: RegistrationResult) -> None:
        """Only the bcrypt hash of the key secret reaches the database."""
        key_id, secret = registered.api_key_secret.split(".", 1)
        assert key_id == registered.api_key.id
        stored = service.store.get_active_api_key(key_id)
        assert secret not in stored.secret_hash
        assert service.hasher.verify(secret, stored.secret_hash)

    def test_password_is_hashed(self, service: AuthService, registered: RegistrationResult) -> None:
        """The stored password is a hash that verifies against the plaintext."""
        stored = service.store.get_user_by_id(registered.user.id)
        assert stored.password_hash != PASSWORD
        assert service.hasher.verify(PASSWORD, stored.password_hash)

    def test_email_is_normalized(self, service: AuthService) -> None:
        """Surrounding whitespace is stripped and the email is lowercased."""
        result = service.register("  Bob@Example.COM ", PASSWORD, "Bob", "Bob Co")
        assert result.user.email == "bob@example.com"

    def test_opens_session_and_token(self, service: AuthService, registered: RegistrationResult) -> None:
        """Registration logs the user in: a live session and a token for their id."""
        assert service.sessions.find(registered.session.id) is not None
        claims = service.signer.verify(registered.access_token)
        assert claims.sub == registered.user.id

    def test_writes_audit_entry(self, service: AuthService, registered: RegistrationResult) -> None:
        """One user.registered entry carries the email and organization name."""
        entries = service.audit.history(actor_id=registered.user.id, action="user.registered")
        assert len(entries) == 1
        assert entries[0].organization_id == registered.organization.id
        assert entries[0].metadata == {"email": "alice@example.com", "orgName": "Acme Corp"}

    def test_duplicate_email_conflicts_case_insensitively(
        self, service: AuthService, registered: RegistrationResult
    ) -> None:
        """Re-registering an email in another case is a 400 conflict with no new rows."""
        with pytest.raises(ConflictError) as exc_info:
            service.register("ALICE@example.com", "another-pass-1", "Alice 2", "Other Org")
        assert exc_info.value.code == "validation_error"
        assert exc_info.value.status_code == 400
        assert _count(service.store, "users") == 1
        assert _count(service.store, "organizations") == 1

    def test_concurrent_duplicate_caught_by_unique_constraint(
        self,
        service: AuthService,
        registered: RegistrationResult,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """When the pre-check misses a racing registration, the UNIQUE violation is the same conflict."""
        monkeypatch.setattr(service.store, "get_user_by_email", lambda email: None)

        with pytest.raises(ConflictError) as exc_info:
            service.register("ALICE@example.com", "another-pass-1", "Alice 2", "Other Org")

        assert exc_info.value.code == "validation_error"
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Email already registered"
        assert _count(service.store, "users") == 1
        assert _count(service.store, "organizations") == 1
        assert _count(service.store, "api_keys") == 1

    def test_conflict_is_a_validation_error(self) -> None:
        """Clients see a duplicate email as an ordinary validation_error."""
        assert issubclass(ConflictError, ValidationError)

    def test_password_over_72_bytes_rejected(self, service: AuthService) -> None:
        """A password bcrypt would truncate is refused before anything is written."""
        with pytest.raises(ValidationError):
            service.register("long@example.com", "x" * 73, "Long", "Long Org")
        assert _count(service.store, "users") == 0

    def test_failure_mid_transaction_rolls_back_everything(
        self, service: AuthService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """If the key insert fails, the user and organization must not survive."""

        def explode(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(service.store, "create_api_key", explode)
        with pytest.raises(RuntimeError):
            service.register("carol@example.com", PASSWORD, "Carol", "Carol Co")

        assert _count(service.store, "users") == 0
        assert _count(service.store, "organizations") == 0
        assert _count(service.store, "api_keys") == 0
        assert _count(service.store, "audit_logs") == 0
        assert _count(service.store, "sessions") == 0

    def test_email_can_register_after_rollback(self, service: AuthService, monkeypatch: pytest.MonkeyPatch) -> None:
        """A rolled-back attempt leaves the email free for the next one."""
        original = service.store.create_api_key

        def explode(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(service.store, "create_api_key", explode)
        with pytest.raises(RuntimeError):
            service.register("dave@example.com", PASSWORD, "Dave", "Dave Co")
        monkeypatch.setattr(service.store, "create_api_key", original)

        result = service.register("dave@example.com", PASSWORD, "Dave", "Dave Co")
        assert result.user.email == "dave@example.com"


class TestLogin:
    """login() and authenticate() with every failure mode looking the same."""

    def test_login_succeeds(self, service: AuthService, registered: RegistrationResult) -> None:
        """Correct credentials give a token for the user and a session recording the IP."""
        result = service.login("alice@example.com", PASSWORD, ip="198.51.100.4")
        assert result.user.id == registered.user.id
        assert result.user.last_login_at is not None
        assert service.signer.verify(result.access_token).sub == registered.user.id
        assert service.sessions.find(result.session.id).ip == "198.51.100.4"

    def test_login_email_case_insensitive(self, service: AuthService, registered: RegistrationResult) -> None:
        """An uppercased email logs into the lowercase account."""
        result = service.login("ALICE@EXAMPLE.COM", PASSWORD)
        assert result.user.id == registered.user.id

    def test_last_login_is_persisted(self, service: AuthService, registered: RegistrationResult) -> None:
        """The returned last_login_at matches the stored one."""
        result = service.login("alice@example.com", PASSWORD)
        stored = service.store.get_user_by_id(registered.user.id)
        assert stored.last_login_at == result.user.last_login_at

    def test_failure_modes_share_one_message(self, service: AuthService, registered: RegistrationResult) -> None:
        """Wrong password, unknown email and inactive account raise the same message."""
        messages = []
        with pytest.raises(UnauthorizedError) as wrong_password:
            service.login("alice@example.com", "wrong-password")
        messages.append(wrong_password.value.message)

        with pytest.raises(UnauthorizedError) as unknown_email:
            service.login("nobody@example.com", PASSWORD)
        messages.append(unknown_email.value.message)

        service.store.set_user_active(registered.user.id, False)
        with pytest.raises(UnauthorizedError) as inactive:
            service.login("alice@example.com", PASSWORD)
        messages.append(inactive.value.message)

        assert set(messages) == {"Invalid email or password"}

    def test_unknown_email_still_runs_bcrypt(
        self, service: AuthService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The unknown-email path burns a dummy bcrypt comparison."""
        calls = []
        monkeypatch.setattr(service.hasher, "verify_dummy", lambda plaintext: calls.append(plaintext))
        with pytest.raises(UnauthorizedError):
            service.login("nobody@example.com", "whatever")
        assert calls == ["whatever"]

    def test_login_writes_audit_entry(self, service: AuthService, registered: RegistrationResult) -> None:
        """A user.login entry records the email and client IP."""
        service.login("alice@example.com", PASSWORD, ip="198.51.100.4")
        entries = service.audit.history(actor_id=registered.user.id, action="user.login")
        assert entries[0].metadata == {"email": "alice@example.com", "ip": "198.51.100.4"}

    def test_login_survives_audit_write_failure(
        self, service: AuthService, registered: RegistrationResult, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A failed user.login audit write does not fail an otherwise valid login."""

        def locked(*args, **kwargs):
            raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))

        monkeypatch.setattr(service.store, "create_audit_log", locked)
        result = service.login("alice@example.com", PASSWORD)
        assert result.user.id == registered.user.id
        assert result.access_token


class TestLogoutAndRefresh:
    """logout() drops sessions; refresh() reissues tokens."""

    def test_logout_revokes_every_session(self, service: AuthService, registered: RegistrationResult) -> None:
        """Both the registration session and a later login session are removed."""
        second = service.login("alice@example.com", PASSWORD)
        assert service.logout(registered.user) == 2
        assert service.sessions.find(registered.session.id) is None
        assert service.sessions.find(second.session.id) is None

    def test_token_survives_logout(self, service: AuthService, registered: RegistrationResult) -> None:
        """Access tokens are stateless; logout does not invalidate one already issued."""
        service.logout(registered.user)
        principal = service.resolver.resolve(RequestCredentials(authorization_token=registered.access_token))
        assert principal is not None

    def test_refresh_extends_expiry(self, service: AuthService, registered: RegistrationResult) -> None:
        """A refreshed token expires later than one issued five minutes earlier."""
        earlier = TokenSigner(
            "test-secret-key-that-is-at-least-32-characters",
            clock=lambda: datetime.now(timezone.utc) - timedelta(minutes=5),
        )
        old_token = earlier.issue(registered.user.id, registered.user.email)
        new_token = service.refresh(registered.user)
        assert service.signer.verify(new_token).exp > service.signer.verify(old_token).exp


class TestApiKeys:
    """API key management scoped to the caller's organization."""

    def test_create_returns_plaintext_once(self, service: AuthService, registered: RegistrationResult) -> None:
        """The returned plaintext authenticates as the user's organization."""
        api_key, plaintext = service.create_api_key(registered.user, "CI", ["usage:read"])
        assert plaintext.startswith(f"{api_key.id}.")
        assert api_key.scopes == ["usage:read"]
        principal = service.resolver.resolve(RequestCredentials(authorization_token=plaintext))
        assert principal.organization_id == registered.organization.id

    def test_create_defaults_scopes(self, service: AuthService, registered: RegistrationResult) -> None:
        """Without scopes a key gets usage:write."""
        api_key, _ = service.create_api_key(registered.user, "Default scopes")
        assert api_key.scopes == ["usage:write"]

    def test_list_includes_default_key(self, service: AuthService, registered: RegistrationResult) -> None:
        """Listing shows the registration key alongside new ones."""
        service.create_api_key(registered.user, "Second")
        names = [k.name for k in service.list_api_keys(registered.user)]
        assert set(names) == {DEFAULT_API_KEY_NAME, "Second"}

    def test_revoke(self, service: AuthService, registered: RegistrationResult) -> None:
        """A revoked key disappears from lookups but stays listed as revoked."""
        service.revoke_api_key(registered.user, registered.api_key.id)
        assert service.store.get_active_api_key(registered.api_key.id) is None
        listed = service.list_api_keys(registered.user)
        assert listed[0].is_revoked

    def test_revoke_twice_is_not_found(self, service: AuthService, registered: RegistrationResult) -> None:
        """Revoking an already revoked key raises NotFoundError."""
        service.revoke_api_key(registered.user, registered.api_key.id)
        with pytest.raises(NotFoundError):
            service.revoke_api_key(registered.user, registered.api_key.id)

    def test_cannot_revoke_other_tenants_key(self, service: AuthService, registered: RegistrationResult) -> None:
        """Another organization's key id is not found and stays live."""
        other = service.register("eve@example.com", PASSWORD, "Eve", "Eve Co")
        with pytest.raises(NotFoundError):
            service.revoke_api_key(other.user, registered.api_key.id)
        assert service.store.get_active_api_key(registered.api_key.id) is not None

    def test_get_unknown_organization(self, service: AuthService) -> None:
        """An unknown organization id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            service.get_organization("missing")
