"""
auth/sessions.py -- Server-side session references.

A completed login produces two independent proofs of identity: the signed
JWT from auth/tokens.py and a random session_id stored here. The session_id
travels in an httpOnly cookie; the JWT is returned in the response body for
API clients. Either one authenticates later requests.

Unlike the JWT, a session can be invalidated before it expires (logout,
admin action), so it is the one the web flow relies on.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError

from auth.errors import StoreUnavailableError
from auth.models import Session
from core.config import get_settings
from core.db import from_db_time, make_engine, to_db_time, utcnow

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("session_id", String(64), primary_key=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
)


class SessionStore:
    """Create, verify, and invalidate session references.

    Pass the AccountStore's engine to keep sessions in the same database.
    """

    def __init__(
        self,
        db_url: str | None = None,
        engine: Engine | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine: Engine = engine or make_engine(db_url or get_settings().database_url)
        self.clock = clock
        _metadata.create_all(self.engine)

    def create(self, account_id: int, ttl_seconds: int) -> Session:
        now = self.clock()
        session = Session(
            session_id=secrets.token_urlsafe(32),
            account_id=account_id,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _sessions.insert().values(
                        session_id=session.session_id,
                        account_id=account_id,
                        created_at=to_db_time(session.created_at),
                        expires_at=to_db_time(session.expires_at),
                        revoked=0,
                    )
                )
        except DBAPIError as exc:
            raise StoreUnavailableError(f"session store failure: {exc.orig!r}") from exc
        return session

    def verify(self, session_id: str) -> Session | None:
        """Return the live session for session_id, or None if unknown, revoked, or expired."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    _sessions.select().where(
                        (_sessions.c.session_id == session_id)
                        & (_sessions.c.revoked == 0)
                        & (_sessions.c.expires_at > to_db_time(self.clock()))
                    )
                ).fetchone()
        except DBAPIError as exc:
            raise StoreUnavailableError(f"session store failure: {exc.orig!r}") from exc
        if row is None:
            return None
        return Session(
            session_id=row.session_id,
            account_id=row.account_id,
            created_at=from_db_time(row.created_at),
            expires_at=from_db_time(row.expires_at),
            revoked=bool(row.revoked),
        )

    def invalidate(self, session_id: str) -> bool:
        """Revoke a session. Returns True if a live session was revoked."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _sessions.update()
                    .where((_sessions.c.session_id == session_id) & (_sessions.c.revoked == 0))
                    .values(revoked=1)
                )
        except DBAPIError as exc:
            raise StoreUnavailableError(f"session store failure: {exc.orig!r}") from exc
        return result.rowcount > 0

    def invalidate_account(self, account_id: int) -> int:
        """Revoke every live session for an account (used when an admin locks it)."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _sessions.update()
                    .where((_sessions.c.account_id == account_id) & (_sessions.c.revoked == 0))
                    .values(revoked=1)
                )
        except DBAPIError as exc:
            raise StoreUnavailableError(f"session store failure: {exc.orig!r}") from exc
        return result.rowcount

    def purge_expired(self) -> int:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _sessions.delete().where(
                        (_sessions.c.expires_at <= to_db_time(self.clock())) | (_sessions.c.revoked == 1)
                    )
                )
        except DBAPIError as exc:
            raise StoreUnavailableError(f"session store failure: {exc.orig!r}") from exc
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
