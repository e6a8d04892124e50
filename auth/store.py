"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_* functions are the mappers. Service, resolver and route code never
touch SQL directly.

Transactions:
  Every write method takes an optional `conn`. Without one, the method opens
  its own engine.begin() block and commits on return. With one (obtained from
  transaction()), the write joins the caller's transaction and nothing is
  committed until the caller's block exits cleanly. Any exception inside a
  transaction() block rolls back every statement issued on that connection.

Connection pool:
  For server databases the pool is capped at pool_size with no overflow.
  Checkout blocks for at most pool_timeout seconds, then raises
  sqlalchemy.exc.TimeoutError. SQLite keeps SQLAlchemy's default pool.

Security:
  All queries use bound parameters. No f-strings in SQL.
  hide_parameters=True keeps bound values (password hashes, emails) out of
  exception messages and logs. Failed statements are logged truncated.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Connection, Engine

from auth.models import ApiKey, AuditLog, Organization, Session, User

logger = logging.getLogger("tenantgate.store")

_SLOW_QUERY_SECONDS = 1.0
_LOG_STATEMENT_CHARS = 100

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # lowercase
    Column("name", String(100), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_organizations = Table(
    "organizations",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("slug", String(120), nullable=False),  # not unique -- collisions allowed
    Column("owner_id", String(36), nullable=False),
    Column("meta", Text, nullable=False, server_default="{}"),  # JSON object
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("ix_organizations_owner_id", "owner_id"),
)

_api_keys = Table(
    "api_keys",
    metadata,
    Column("id", String(32), primary_key=True),  # public key id
    Column("organization_id", String(36), nullable=False),
    Column("name", String(100), nullable=False),
    Column("secret_hash", Text, nullable=False),  # bcrypt of the secret half
    Column("scopes", Text, nullable=False, server_default="[]"),  # JSON array
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
    Index("ix_api_keys_organization_id", "organization_id"),
)

_sessions = Table(
    "sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("ip", String(255)),
    Column("user_agent", Text),
    Index("ix_sessions_user_id", "user_id"),
)

_audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("actor_id", String(36)),
    Column("organization_id", String(36)),
    Column("action", String(100), nullable=False),
    Column("meta", Text, nullable=False, server_default="{}"),  # JSON object
    Column("created_at", String(32), nullable=False),
    Index("ix_audit_logs_actor_id", "actor_id"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utc_iso(dt: datetime | None = None) -> str:
    """Format a timestamp as UTC ISO 8601 with fixed microsecond precision.

    Fixed precision keeps string comparison in SQL equivalent to time
    comparison (isoformat() drops the fraction when it is zero).
    """
    dt = dt or datetime.now(timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _truncate(statement: str) -> str:
    statement = " ".join(statement.split())
    if len(statement) > _LOG_STATEMENT_CHARS:
        return statement[:_LOG_STATEMENT_CHARS] + "..."
    return statement


# ---------------------------------------------------------------------------
# Engine events
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
    conn.info.setdefault("query_start", []).append(time.perf_counter())


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
    starts = conn.info.get("query_start")
    if not starts:
        return
    elapsed = time.perf_counter() - starts.pop()
    if elapsed > _SLOW_QUERY_SECONDS:
        logger.warning("Slow query (%.0fms): %s", elapsed * 1000, _truncate(statement))


def _handle_error(context) -> None:
    """Log a failed statement without its bound parameters."""
    logger.warning(
        "Query failed (%s): %s",
        type(context.original_exception).__name__,
        _truncate(context.statement or ""),
    )
    if context.connection is not None:
        starts = context.connection.info.get("query_start")
        if starts:
            starts.pop()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for users, organizations, API keys, sessions and audit logs.

    Usage:
        store = CredentialStore("sqlite:///tenantgate.db")
        with store.transaction() as conn:
            user = store.create_user(User(...), conn=conn)
            store.create_organization(Organization(..., owner_id=user.id), conn=conn)
        store.get_user_by_email("a@x.com")
        store.close()
    """

    def __init__(
        self,
        db_url: str,
        pool_size: int = 10,
        pool_timeout: int = 10,
        pool_recycle: int = 30,
    ) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {"hide_parameters": True}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            # TestClient and uvicorn's threadpool touch the same connection
            # from different threads.
            connect_args["check_same_thread"] = False
        else:
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=0,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                pool_pre_ping=True,
            )
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _set_wal_mode)
        event.listen(self.engine, "before_cursor_execute", _before_cursor_execute)
        event.listen(self.engine, "after_cursor_execute", _after_cursor_execute)
        event.listen(self.engine, "handle_error", _handle_error)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Connection scoping
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Check out one connection and run everything on it as one transaction.

        Commits when the block exits normally; rolls back when it exits via
        any exception (including early-return paths that raise).
        """
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def _write(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as own:
            yield own

    def ping(self) -> None:
        """Round-trip a trivial query. Raises on storage failure."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, conn: Connection | None = None) -> User:
        """Insert a user and return the stored record.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = utc_iso()
        stored = replace(
            user,
            id=user.id or new_id(),
            email=normalize_email(user.email),
            created_at=now,
            updated_at=now,
        )
        with self._write(conn) as c:
            c.execute(
                _users.insert().values(
                    id=stored.id,
                    email=stored.email,
                    name=stored.name,
                    password_hash=stored.password_hash,
                    is_active=1 if stored.is_active else 0,
                    created_at=stored.created_at,
                    updated_at=stored.updated_at,
                    last_login_at=stored.last_login_at,
                )
            )
        return stored

    def get_user_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup (emails are stored lowercase)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_last_login(self, user_id: str) -> str:
        """Stamp last_login_at with the current UTC time and return the stamp."""
        now = utc_iso()
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=now, updated_at=now))
        return now

    def set_user_active(self, user_id: str, active: bool) -> bool:
        """Activate or deactivate a user. Returns False if user_id was not found."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_active=1 if active else 0, updated_at=utc_iso())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def create_organization(self, org: Organization, conn: Connection | None = None) -> Organization:
        now = utc_iso()
        stored = replace(org, id=org.id or new_id(), created_at=now, updated_at=now)
        with self._write(conn) as c:
            c.execute(
                _organizations.insert().values(
                    id=stored.id,
                    name=stored.name,
                    slug=stored.slug,
                    owner_id=stored.owner_id,
                    meta=json.dumps(stored.metadata),
                    created_at=stored.created_at,
                    updated_at=stored.updated_at,
                )
            )
        return stored

    def get_organization(self, org_id: str) -> Organization | None:
        with self.engine.connect() as conn:
            row = conn.execute(_organizations.select().where(_organizations.c.id == org_id)).fetchone()
        return _row_to_organization(row) if row is not None else None

    def get_organization_by_owner(self, owner_id: str) -> Organization | None:
        """Return the oldest organization owned by owner_id, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _organizations.select()
                .where(_organizations.c.owner_id == owner_id)
                .order_by(_organizations.c.created_at)
                .limit(1)
            ).fetchone()
        return _row_to_organization(row) if row is not None else None

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    def create_api_key(self, api_key: ApiKey, conn: Connection | None = None) -> ApiKey:
        stored = replace(api_key, created_at=utc_iso(), revoked_at=None)
        with self._write(conn) as c:
            c.execute(
                _api_keys.insert().values(
                    id=stored.id,
                    organization_id=stored.organization_id,
                    name=stored.name,
                    secret_hash=stored.secret_hash,
                    scopes=json.dumps(stored.scopes),
                    created_at=stored.created_at,
                    revoked_at=None,
                )
            )
        return stored

    def get_active_api_key(self, key_id: str) -> ApiKey | None:
        """Look up a non-revoked key by its public id. Revoked keys are invisible."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _api_keys.select().where((_api_keys.c.id == key_id) & (_api_keys.c.revoked_at.is_(None)))
            ).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def list_api_keys(self, organization_id: str) -> list[ApiKey]:
        """Return every key of an organization, revoked included, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _api_keys.select()
                .where(_api_keys.c.organization_id == organization_id)
                .order_by(_api_keys.c.created_at.desc())
            ).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def revoke_api_key(self, key_id: str, organization_id: str | None = None) -> bool:
        """Set revoked_at on a live key. Returns False if not found or already revoked.

        When organization_id is given it must match too, so a caller cannot
        revoke another tenant's key by guessing its id.
        """
        condition = (_api_keys.c.id == key_id) & (_api_keys.c.revoked_at.is_(None))
        if organization_id is not None:
            condition = condition & (_api_keys.c.organization_id == organization_id)
        with self.engine.begin() as conn:
            result = conn.execute(_api_keys.update().where(condition).values(revoked_at=utc_iso()))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> Session:
        stored = replace(session, id=session.id or new_id(), created_at=session.created_at or utc_iso())
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=stored.id,
                    user_id=stored.user_id,
                    created_at=stored.created_at,
                    expires_at=stored.expires_at,
                    ip=stored.ip,
                    user_agent=stored.user_agent,
                )
            )
        return stored

    def get_live_session(self, session_id: str, now: str) -> Session | None:
        """Return the session only if it exists and expires after `now`."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.id == session_id) & (_sessions.c.expires_at > now))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_sessions_for_user(self, user_id: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def delete_expired_sessions(self, now: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now))
        return result.rowcount

    # ------------------------------------------------------------------
    # Audit log (insert + read only -- no update or delete methods exist)
    # ------------------------------------------------------------------

    def create_audit_log(self, entry: AuditLog, conn: Connection | None = None) -> AuditLog:
        stored = replace(entry, id=entry.id or new_id(), created_at=utc_iso())
        with self._write(conn) as c:
            c.execute(
                _audit_logs.insert().values(
                    id=stored.id,
                    actor_id=stored.actor_id,
                    organization_id=stored.organization_id,
                    action=stored.action,
                    meta=json.dumps(stored.metadata),
                    created_at=stored.created_at,
                )
            )
        return stored

    def list_audit_logs(
        self,
        actor_id: str | None = None,
        organization_id: str | None = None,
        action: str | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        """Return audit entries matching every given filter, newest first."""
        query = _audit_logs.select()
        if actor_id is not None:
            query = query.where(_audit_logs.c.actor_id == actor_id)
        if organization_id is not None:
            query = query.where(_audit_logs.c.organization_id == organization_id)
        if action is not None:
            query = query.where(_audit_logs.c.action == action)
        query = query.order_by(_audit_logs.c.created_at.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit_log(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
    )


def _row_to_organization(row) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        slug=row.slug,
        owner_id=row.owner_id,
        metadata=json.loads(row.meta or "{}"),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_api_key(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        organization_id=row.organization_id,
        name=row.name,
        secret_hash=row.secret_hash,
        scopes=json.loads(row.scopes or "[]"),
        created_at=row.created_at,
        revoked_at=row.revoked_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
        ip=row.ip,
        user_agent=row.user_agent,
    )


def _row_to_audit_log(row) -> AuditLog:
    return AuditLog(
        id=row.id,
        actor_id=row.actor_id,
        organization_id=row.organization_id,
        action=row.action,
        metadata=json.loads(row.meta or "{}"),
        created_at=row.created_at,
    )
