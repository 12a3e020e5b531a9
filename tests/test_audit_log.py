"""Unit tests for audit/store.py -- AuditLog.

Covers:
- record() assigns id and created_at from the store clock
- query() ordering (newest first), user filter, limit clamp
- details round-trip as a JSON object
- append() swallows write failures and logs them
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

from audit.models import AuditAction, AuditLogEntry
from audit.store import MAX_QUERY_LIMIT, AuditLog


def test_record_assigns_id_and_timestamp(audit: AuditLog, clock) -> None:
    entry = audit.record(AuditAction.LOGIN_FAILED, user_id=7, details={"reason": "Invalid password"})
    assert entry.id is not None
    assert entry.created_at == clock.now
    assert entry.details == {"reason": "Invalid password"}


def test_query_newest_first(audit: AuditLog, clock) -> None:
    audit.record(AuditAction.LOGIN_FAILED, user_id=1)
    clock.advance(seconds=1)
    audit.record(AuditAction.LOGIN_SUCCESS, user_id=1)
    clock.advance(seconds=1)
    audit.record(AuditAction.LOGOUT, user_id=1)
    assert [e.action for e in audit.query()] == [
        AuditAction.LOGOUT,
        AuditAction.LOGIN_SUCCESS,
        AuditAction.LOGIN_FAILED,
    ]


def test_same_instant_ties_break_on_insert_order(audit: AuditLog) -> None:
    audit.record(AuditAction.LOGIN_FAILED, user_id=1)
    audit.record(AuditAction.ACCOUNT_LOCKED, user_id=1)
    assert audit.query()[0].action == AuditAction.ACCOUNT_LOCKED


def test_query_filters_by_user(audit: AuditLog) -> None:
    audit.record(AuditAction.LOGIN_SUCCESS, user_id=1)
    audit.record(AuditAction.LOGIN_SUCCESS, user_id=2)
    audit.record(AuditAction.LOGIN_FAILED, user_id=2)
    entries = audit.query(user_id=2)
    assert len(entries) == 2
    assert {e.user_id for e in entries} == {2}


def test_query_limit(audit: AuditLog) -> None:
    for _ in range(5):
        audit.record(AuditAction.LOGIN_FAILED, user_id=3)
    assert len(audit.query(limit=2)) == 2
    assert len(audit.query(limit=MAX_QUERY_LIMIT * 10)) == 5
    assert audit.query(limit=-1) == []


def test_system_event_without_user(audit: AuditLog) -> None:
    entry = audit.append(AuditLogEntry(action=AuditAction.UNAUTHORIZED_ACCESS, details={"resource": "/x"}))
    stored = audit.query()[0]
    assert stored.id == entry.id
    assert stored.user_id is None
    assert stored.details == {"resource": "/x"}
    assert stored.to_dict()["created_at"] == entry.created_at.isoformat()


def test_append_failure_is_swallowed_and_logged(audit: AuditLog, caplog) -> None:
    audit.engine = MagicMock()
    audit.engine.begin.side_effect = RuntimeError("disk full")
    with caplog.at_level(logging.ERROR, logger="nextgate.audit"):
        result = audit.record(AuditAction.LOGIN_SUCCESS, user_id=1)
    assert result is None
    assert "Audit write failed" in caplog.text
