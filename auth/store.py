"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account and friends are the mappers.
The Authenticator and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Failed-login bookkeeping is a single UPDATE statement. The increment and
  the lock decision are computed from the same pre-update row inside the
  database, so two concurrent wrong passwords can neither skip the threshold
  nor count twice.

  Pending MFA handles are consumed with DELETE ... WHERE expires_at > now.
  Whoever gets rowcount == 1 owns the login; everyone else is rejected.

Timestamps go through core.db.to_db_time / from_db_time.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, case, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError

from auth.errors import AccountNotFoundError, DuplicateEmailError, StoreUnavailableError
from auth.models import (
    ROLE_USER,
    SUBSCRIPTION_INACTIVE,
    SUBSCRIPTION_STATUSES,
    Account,
    PendingEnrollment,
    PendingLogin,
)
from auth.tokens import hash_password, verify_password
from core.config import get_settings
from core.db import from_db_time, make_engine, to_db_time, utcnow

# Fixed policy: the fifth consecutive wrong password locks the account.
MAX_FAILED_LOGINS = 5
PASSWORD_LIFETIME = timedelta(days=365)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("name", String(255)),
    Column("company_name", String(255)),
    Column("role", String(30), nullable=False, server_default=ROLE_USER),
    Column("password_created_at", String(32), nullable=False),
    Column("password_expires_at", String(32), nullable=False),
    Column("last_password_change", String(32)),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("account_locked", Integer, nullable=False, server_default="0"),
    Column("last_failed_login", String(32)),
    Column("subscription_status", String(20), nullable=False, server_default=SUBSCRIPTION_INACTIVE),
    Column("subscription_plan", String(50)),
    Column("stripe_customer_id", String(255)),
    Column("subscription_id", String(255)),
    Column("subscription_current_period_end", String(32)),
    Column("mfa_enabled", Integer, nullable=False, server_default="0"),
    Column("mfa_secret", String(64)),  # NULL unless mfa_enabled
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("last_login_ip", String(45)),
)

_pending_logins = Table(
    "pending_logins",
    metadata,
    Column("handle", String(64), primary_key=True),
    Column("account_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)

_pending_enrollments = Table(
    "pending_mfa_enrollments",
    metadata,
    Column("account_id", Integer, primary_key=True),  # one candidate secret per account
    Column("secret", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)

# Columns update_account() may touch. Counter and lock columns are included
# for admin unlock; callers outside this module should prefer the dedicated
# methods below.
_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "company_name",
        "role",
        "password_hash",
        "password_created_at",
        "password_expires_at",
        "last_password_change",
        "failed_login_attempts",
        "account_locked",
        "last_failed_login",
        "subscription_status",
        "subscription_plan",
        "stripe_customer_id",
        "subscription_id",
        "subscription_current_period_end",
        "mfa_enabled",
        "mfa_secret",
        "last_login",
        "last_login_ip",
    }
)
_BOOL_FIELDS = frozenset({"account_locked", "mfa_enabled"})


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records and their short-lived MFA state.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account = store.create_account("a@example.com", "Abc12345!@#$")
        store.record_failed_login(account.id)
        store.close()

    clock is injectable so tests can move time without sleeping.
    """

    def __init__(
        self,
        db_url: str | None = None,
        engine: Engine | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine: Engine = engine or make_engine(db_url or get_settings().database_url)
        self.clock = clock
        metadata.create_all(self.engine)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Open a transaction; translate driver failures to StoreUnavailableError.

        IntegrityError passes through untouched -- it carries meaning
        (duplicate email) that callers handle themselves.
        """
        try:
            with self.engine.begin() as conn:
                yield conn
        except IntegrityError:
            raise
        except DBAPIError as exc:
            raise StoreUnavailableError(f"account store failure: {exc.orig!r}") from exc

    def _now(self) -> datetime:
        return self.clock()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def has_accounts(self) -> bool:
        with self._connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return (result or 0) > 0

    def create_account(
        self,
        email: str,
        raw_password: str,
        name: str | None = None,
        company_name: str | None = None,
        role: str = ROLE_USER,
    ) -> Account:
        """Hash the password and insert a new inactive account.

        Raises DuplicateEmailError if the exact email already exists. The
        UNIQUE constraint backs up the pre-check when two signups race.
        """
        if self.find_by_email(email) is not None:
            raise DuplicateEmailError(email)

        password_hash = hash_password(raw_password)
        now = self._now()
        stamp = to_db_time(now)
        try:
            with self._connect() as conn:
                result = conn.execute(
                    _accounts.insert().values(
                        email=email,
                        password_hash=password_hash,
                        name=name or email.split("@")[0],
                        company_name=company_name,
                        role=role,
                        password_created_at=stamp,
                        password_expires_at=to_db_time(now + PASSWORD_LIFETIME),
                        last_password_change=stamp,
                        failed_login_attempts=0,
                        account_locked=0,
                        subscription_status=SUBSCRIPTION_INACTIVE,
                        mfa_enabled=0,
                        created_at=stamp,
                        updated_at=stamp,
                    )
                )
                account_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateEmailError(email) from exc
        return self._require(account_id)

    def find_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email (case-sensitive). Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: int) -> Account | None:
        with self._connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def list_accounts(self) -> list[Account]:
        """Return all accounts ordered by id. Admin-only operation."""
        with self._connect() as conn:
            rows = conn.execute(_accounts.select().order_by(_accounts.c.id)).fetchall()
        return [_row_to_account(r) for r in rows]

    def update_account(self, account_id: int, **fields) -> Account:
        """Merge fields into an existing account and stamp updated_at.

        datetime values are stored as ISO strings and bools as 0/1.
        Raises AccountNotFoundError for an unknown id and ValueError for a
        field name that is not an updatable column.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {sorted(unknown)!r}")
        if "subscription_status" in fields and fields["subscription_status"] not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"Invalid subscription status: {fields['subscription_status']!r}")

        values = {k: _to_column_value(k, v) for k, v in fields.items()}
        values["updated_at"] = to_db_time(self._now())
        with self._connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            if result.rowcount == 0:
                raise AccountNotFoundError(account_id)
        return self._require(account_id)

    def verify_password(self, raw: str, password_hash: str) -> bool:
        return verify_password(raw, password_hash)

    def record_failed_login(self, account_id: int) -> Account:
        """Atomically count one wrong password; lock at MAX_FAILED_LOGINS.

        Both SET expressions read the pre-update counter, so the lock flag is
        decided from the same value that is being incremented.
        """
        stamp = to_db_time(self._now())
        attempts = _accounts.c.failed_login_attempts
        with self._connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(
                    failed_login_attempts=attempts + 1,
                    account_locked=case((attempts + 1 >= MAX_FAILED_LOGINS, 1), else_=_accounts.c.account_locked),
                    last_failed_login=stamp,
                    updated_at=stamp,
                )
            )
            if result.rowcount == 0:
                raise AccountNotFoundError(account_id)
        return self._require(account_id)

    def reset_failed_logins(self, account_id: int) -> None:
        with self._connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(failed_login_attempts=0, last_failed_login=None, updated_at=to_db_time(self._now()))
            )
            if result.rowcount == 0:
                raise AccountNotFoundError(account_id)

    def is_password_expired(self, account: Account, now: datetime | None = None) -> bool:
        """True iff now is strictly after password_expires_at.

        The expiry instant itself still counts as valid.
        """
        if account.password_expires_at is None:
            return False
        return (now or self._now()) > account.password_expires_at

    def change_password(self, account_id: int, raw_password: str) -> Account:
        """Store a new hash and restart the 365-day password lifetime."""
        now = self._now()
        return self.update_account(
            account_id,
            password_hash=hash_password(raw_password),
            password_created_at=now,
            password_expires_at=now + PASSWORD_LIFETIME,
            last_password_change=now,
        )

    def lock(self, account_id: int) -> Account:
        return self.update_account(account_id, account_locked=True)

    def unlock(self, account_id: int) -> Account:
        """Administrative unlock -- the only way account_locked clears."""
        return self.update_account(account_id, account_locked=False, failed_login_attempts=0, last_failed_login=None)

    def update_subscription(
        self,
        account_id: int,
        status: str,
        plan: str | None = None,
        customer_id: str | None = None,
        subscription_id: str | None = None,
        current_period_end: datetime | None = None,
    ) -> Account:
        """Record billing state pushed from the payment provider or an admin."""
        fields: dict = {"subscription_status": status, "subscription_plan": plan}
        if customer_id is not None:
            fields["stripe_customer_id"] = customer_id
        if subscription_id is not None:
            fields["subscription_id"] = subscription_id
        if current_period_end is not None:
            fields["subscription_current_period_end"] = current_period_end
        return self.update_account(account_id, **fields)

    def _require(self, account_id: int) -> Account:
        account = self.find_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    # ------------------------------------------------------------------
    # Pending MFA logins
    # ------------------------------------------------------------------

    def create_pending_login(self, account_id: int, ttl_seconds: int) -> PendingLogin:
        now = self._now()
        pending = PendingLogin(
            handle=secrets.token_urlsafe(32),
            account_id=account_id,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        with self._connect() as conn:
            conn.execute(
                _pending_logins.insert().values(
                    handle=pending.handle,
                    account_id=account_id,
                    created_at=to_db_time(pending.created_at),
                    expires_at=to_db_time(pending.expires_at),
                )
            )
        return pending

    def get_pending_login(self, handle: str) -> PendingLogin | None:
        """Return the pending login for handle, or None if unknown or expired."""
        with self._connect() as conn:
            row = conn.execute(
                _pending_logins.select().where(
                    (_pending_logins.c.handle == handle) & (_pending_logins.c.expires_at > to_db_time(self._now()))
                )
            ).fetchone()
        if row is None:
            return None
        return PendingLogin(
            handle=row.handle,
            account_id=row.account_id,
            created_at=from_db_time(row.created_at),
            expires_at=from_db_time(row.expires_at),
        )

    def consume_pending_login(self, handle: str) -> bool:
        """Delete an unexpired handle. True only for the caller that removed it."""
        with self._connect() as conn:
            result = conn.execute(
                _pending_logins.delete().where(
                    (_pending_logins.c.handle == handle) & (_pending_logins.c.expires_at > to_db_time(self._now()))
                )
            )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Pending MFA enrollments
    # ------------------------------------------------------------------

    def put_pending_enrollment(self, account_id: int, secret: str, ttl_seconds: int) -> PendingEnrollment:
        """Store a candidate secret, replacing any earlier one for the account."""
        now = self._now()
        pending = PendingEnrollment(
            account_id=account_id,
            secret=secret,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        with self._connect() as conn:
            conn.execute(_pending_enrollments.delete().where(_pending_enrollments.c.account_id == account_id))
            conn.execute(
                _pending_enrollments.insert().values(
                    account_id=account_id,
                    secret=secret,
                    created_at=to_db_time(pending.created_at),
                    expires_at=to_db_time(pending.expires_at),
                )
            )
        return pending

    def get_pending_enrollment(self, account_id: int) -> PendingEnrollment | None:
        with self._connect() as conn:
            row = conn.execute(
                _pending_enrollments.select().where(
                    (_pending_enrollments.c.account_id == account_id)
                    & (_pending_enrollments.c.expires_at > to_db_time(self._now()))
                )
            ).fetchone()
        if row is None:
            return None
        return PendingEnrollment(
            account_id=row.account_id,
            secret=row.secret,
            created_at=from_db_time(row.created_at),
            expires_at=from_db_time(row.expires_at),
        )

    def delete_pending_enrollment(self, account_id: int) -> None:
        with self._connect() as conn:
            conn.execute(_pending_enrollments.delete().where(_pending_enrollments.c.account_id == account_id))

    def purge_expired(self) -> int:
        """Delete expired pending logins and enrollments. Returns rows removed."""
        cutoff = to_db_time(self._now())
        with self._connect() as conn:
            logins = conn.execute(_pending_logins.delete().where(_pending_logins.c.expires_at <= cutoff))
            enrollments = conn.execute(
                _pending_enrollments.delete().where(_pending_enrollments.c.expires_at <= cutoff)
            )
        return logins.rowcount + enrollments.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _to_column_value(field: str, value):
    if field in _BOOL_FIELDS:
        return 1 if value else 0
    if isinstance(value, datetime):
        return to_db_time(value)
    return value


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        company_name=row.company_name,
        role=row.role,
        password_created_at=from_db_time(row.password_created_at),
        password_expires_at=from_db_time(row.password_expires_at),
        last_password_change=from_db_time(row.last_password_change),
        failed_login_attempts=row.failed_login_attempts,
        account_locked=bool(row.account_locked),
        last_failed_login=from_db_time(row.last_failed_login),
        subscription_status=row.subscription_status,
        subscription_plan=row.subscription_plan,
        stripe_customer_id=row.stripe_customer_id,
        subscription_id=row.subscription_id,
        subscription_current_period_end=from_db_time(row.subscription_current_period_end),
        mfa_enabled=bool(row.mfa_enabled),
        mfa_secret=row.mfa_secret,
        created_at=from_db_time(row.created_at),
        updated_at=from_db_time(row.updated_at),
        last_login=from_db_time(row.last_login),
        last_login_ip=row.last_login_ip,
    )
