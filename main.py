#!/usr/bin/env python3
"""
tenantgate -- Operator commands for the credential store.

Usage:
  python main.py init-db
  python main.py purge-sessions
  python main.py deactivate-user alice@example.com
  python main.py revoke-key Xk3v9QpL2mWd

Configuration comes from the same environment variables as the API server
(DATABASE_URL, SECRET_KEY, DEBUG, ...); see core/config.py.
"""

import argparse
import logging
import sys
from typing import Optional

from auth.audit import AuditRecorder
from auth.sessions import SessionManager
from auth.store import CredentialStore
from core.config import get_settings

logger = logging.getLogger("tenantgate.cli")


def _open_store() -> CredentialStore:
    settings = get_settings()
    return CredentialStore(
        settings.database_url,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )


def cmd_init_db(store: CredentialStore, args: argparse.Namespace) -> int:
    # CredentialStore() already ran create_all; ping proves the database answers.
    store.ping()
    print("Database schema is up to date.")
    return 0


def cmd_purge_sessions(store: CredentialStore, args: argparse.Namespace) -> int:
    removed = SessionManager(store).purge_expired()
    print(f"Removed {removed} expired session(s).")
    return 0


def cmd_deactivate_user(store: CredentialStore, args: argparse.Namespace) -> int:
    """Disable login and token resolution for a user and drop their sessions."""
    user = store.get_user_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email {args.email}.")
        return 1
    store.set_user_active(user.id, False)
    revoked = SessionManager(store).revoke_all(user.id)
    AuditRecorder(store).record("user.deactivated", metadata={"userId": user.id, "email": user.email})
    print(f"Deactivated {user.email} ({revoked} session(s) revoked).")
    return 0


def cmd_revoke_key(store: CredentialStore, args: argparse.Namespace) -> int:
    if not store.revoke_api_key(args.key_id):
        print(f"  [!] No live API key with id {args.key_id}.")
        return 1
    AuditRecorder(store).record("api_key.revoked", metadata={"keyId": args.key_id, "via": "cli"})
    print(f"Revoked API key {args.key_id}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenantgate",
        description="Operator commands for the tenantgate credential store.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("init-db", help="Create any missing tables")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("purge-sessions", help="Delete sessions whose expiry has passed")
    p.set_defaults(func=cmd_purge_sessions)

    p = sub.add_parser("deactivate-user", help="Disable a user and revoke their sessions")
    p.add_argument("email", help="Email address of the user")
    p.set_defaults(func=cmd_deactivate_user)

    p = sub.add_parser("revoke-key", help="Revoke an API key by its public id")
    p.add_argument("key_id", metavar="KEY_ID", help="Public id (the part before the dot)")
    p.set_defaults(func=cmd_revoke_key)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    store = _open_store()
    try:
        return args.func(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
