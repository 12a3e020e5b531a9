#!/usr/bin/env python3
"""
NextGate admin CLI -- account maintenance without going through the API.

Usage:
  python main.py create-account admin@nextgate.com --role admin --subscription active
  python main.py unlock 42
  python main.py lock 42
  python main.py list
  python main.py audit --user 42 --limit 20
  python main.py purge

Reads DATABASE_URL and the rest of the configuration from the environment or
.env, exactly like the API. The password for create-account is prompted for
(or read from NEXTGATE_PASSWORD when stdin is not a terminal).
"""

import argparse
import getpass
import os
import sys

from audit.models import AuditAction
from audit.store import DEFAULT_QUERY_LIMIT, AuditLog
from auth.errors import AccountNotFoundError, DuplicateEmailError
from auth.models import ROLES, SUBSCRIPTION_STATUSES
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import password_policy_errors
from core.config import get_settings
from core.db import make_engine


def _read_password() -> str:
    if not sys.stdin.isatty():
        return os.environ.get("NEXTGATE_PASSWORD", "")
    first = getpass.getpass("Password: ")
    if getpass.getpass("Repeat password: ") != first:
        print("  [!] Passwords do not match.")
        return ""
    return first


def _cmd_create(args, accounts: AccountStore, audit: AuditLog) -> int:
    password = _read_password()
    errors = password_policy_errors(password)
    if errors:
        for e in errors:
            print(f"  [!] {e}")
        return 1
    try:
        account = accounts.create_account(args.email, password, name=args.name, role=args.role)
    except DuplicateEmailError:
        print(f"  [!] An account with email {args.email} already exists.")
        return 1
    if args.subscription:
        account = accounts.update_subscription(account.id, status=args.subscription, plan=args.plan)
    audit.record(AuditAction.USER_SIGNUP, user_id=account.id, details={"email": account.email, "source": "cli"})
    print(f"  Created account {account.id} ({account.email}, role={account.role}, subscription={account.subscription_status})")
    return 0


def _cmd_lock(args, accounts: AccountStore, audit: AuditLog, sessions: SessionStore) -> int:
    try:
        account = accounts.unlock(args.id) if args.command == "unlock" else accounts.lock(args.id)
    except AccountNotFoundError:
        print(f"  [!] No account with id {args.id}.")
        return 1
    if args.command == "lock":
        sessions.invalidate_account(args.id)
    action = AuditAction.ADMIN_UNLOCK_USER if args.command == "unlock" else AuditAction.ADMIN_LOCK_USER
    audit.record(action, details={"target_user_id": account.id, "target_email": account.email, "source": "cli"})
    state = "locked" if account.account_locked else "unlocked"
    print(f"  Account {account.id} ({account.email}) is now {state}.")
    return 0


def _cmd_list(accounts: AccountStore) -> int:
    for a in accounts.list_accounts():
        flags = []
        if a.account_locked:
            flags.append("LOCKED")
        if a.mfa_enabled:
            flags.append("MFA")
        print(
            f"  {a.id:>5}  {a.email:<40} {a.role:<6} {a.subscription_status:<9} "
            f"fails={a.failed_login_attempts} {' '.join(flags)}"
        )
    return 0


def _cmd_audit(args, audit: AuditLog) -> int:
    for e in audit.query(user_id=args.user, limit=args.limit):
        print(f"  {e.created_at.isoformat()}  {e.action:<22} user={e.user_id} ip={e.ip_address} {e.details}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="NextGate account administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-account", help="Create an account")
    create.add_argument("email")
    create.add_argument("--name")
    create.add_argument("--role", choices=ROLES, default="user")
    create.add_argument("--subscription", choices=SUBSCRIPTION_STATUSES)
    create.add_argument("--plan")

    for name in ("lock", "unlock"):
        p = sub.add_parser(name, help=f"{name.capitalize()} an account by id")
        p.add_argument("id", type=int)

    sub.add_parser("list", help="List accounts")

    audit_p = sub.add_parser("audit", help="Show recent audit entries")
    audit_p.add_argument("--user", type=int, default=None)
    audit_p.add_argument("--limit", type=int, default=DEFAULT_QUERY_LIMIT)

    sub.add_parser("purge", help="Delete expired pending MFA state and sessions")

    args = parser.parse_args(argv)

    engine = make_engine(get_settings().database_url)
    accounts = AccountStore(engine=engine)
    sessions = SessionStore(engine=engine)
    audit = AuditLog(engine=engine)
    try:
        if args.command == "create-account":
            return _cmd_create(args, accounts, audit)
        if args.command in ("lock", "unlock"):
            return _cmd_lock(args, accounts, audit, sessions)
        if args.command == "list":
            return _cmd_list(accounts)
        if args.command == "audit":
            return _cmd_audit(args, audit)
        removed = accounts.purge_expired() + sessions.purge_expired()
        print(f"  Purged {removed} expired records.")
        return 0
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
