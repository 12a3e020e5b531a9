"""
audit/store.py -- Append-only audit log (SQLAlchemy Core).

Pattern: Repository with no update or delete methods. Entries are written
once and read newest-first.

Best-effort policy: append() never raises. A failed write is reported on the
"nextgate.audit" logger and the triggering operation carries on. A login must
not fail because the audit table is unavailable.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from audit.models import AuditLogEntry
from core.config import get_settings
from core.db import from_db_time, make_engine, to_db_time, utcnow

logger = logging.getLogger("nextgate.audit")

DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, index=True),  # NULL for system-wide events
    Column("action", String(64), nullable=False),
    Column("details", Text),  # JSON object
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False, index=True),
)


class AuditLog:
    """Append-only store for AuditLogEntry records.

    Usage:
        audit = AuditLog("sqlite:///:memory:")
        audit.record(AuditAction.LOGIN_FAILED, user_id=7, details={"reason": "Invalid password"})
        audit.query(user_id=7, limit=10)
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

    def append(self, entry: AuditLogEntry) -> AuditLogEntry | None:
        """Persist entry with a fresh id and created_at.

        Returns the stored entry, or None if the write failed. Never raises.
        """
        created_at = self.clock()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _audit_logs.insert().values(
                        user_id=entry.user_id,
                        action=entry.action,
                        details=json.dumps(entry.details or {}, default=str),
                        ip_address=entry.ip_address,
                        user_agent=entry.user_agent,
                        created_at=to_db_time(created_at),
                    )
                )
                entry_id = result.inserted_primary_key[0]
        except Exception:
            logger.exception("Audit write failed (action=%s user_id=%s)", entry.action, entry.user_id)
            return None
        return replace(entry, id=entry_id, created_at=created_at)

    def record(
        self,
        action: str,
        user_id: int | None = None,
        details: dict | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLogEntry | None:
        """Shorthand for append(AuditLogEntry(...))."""
        return self.append(
            AuditLogEntry(
                action=action,
                user_id=user_id,
                details=details or {},
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )

    def query(self, user_id: int | None = None, limit: int = DEFAULT_QUERY_LIMIT) -> list[AuditLogEntry]:
        """Return entries newest-first, optionally for one user, at most limit rows."""
        limit = max(0, min(limit, MAX_QUERY_LIMIT))
        stmt = _audit_logs.select()
        if user_id is not None:
            stmt = stmt.where(_audit_logs.c.user_id == user_id)
        stmt = stmt.order_by(_audit_logs.c.created_at.desc(), _audit_logs.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        details=json.loads(row.details) if row.details else {},
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=from_db_time(row.created_at),
    )
