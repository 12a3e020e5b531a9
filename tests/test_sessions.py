"""Unit tests for auth/sessions.py -- SessionStore."""

from __future__ import annotations

from auth.sessions import SessionStore


def test_create_and_verify(sessions: SessionStore, clock) -> None:
    session = sessions.create(account_id=4, ttl_seconds=60)
    found = sessions.verify(session.session_id)
    assert found.account_id == 4
    assert found.created_at == clock.now
    assert found.revoked is False


def test_session_ids_are_unique(sessions: SessionStore) -> None:
    ids = {sessions.create(account_id=1, ttl_seconds=60).session_id for _ in range(20)}
    assert len(ids) == 20


def test_expired_session_rejected(sessions: SessionStore, clock) -> None:
    session = sessions.create(account_id=4, ttl_seconds=60)
    clock.advance(seconds=60)
    assert sessions.verify(session.session_id) is None


def test_invalidate(sessions: SessionStore) -> None:
    session = sessions.create(account_id=4, ttl_seconds=60)
    assert sessions.invalidate(session.session_id) is True
    assert sessions.invalidate(session.session_id) is False
    assert sessions.verify(session.session_id) is None


def test_invalidate_account_only_touches_that_account(sessions: SessionStore) -> None:
    a1 = sessions.create(account_id=1, ttl_seconds=60)
    a2 = sessions.create(account_id=1, ttl_seconds=60)
    other = sessions.create(account_id=2, ttl_seconds=60)
    assert sessions.invalidate_account(1) == 2
    assert sessions.verify(a1.session_id) is None
    assert sessions.verify(a2.session_id) is None
    assert sessions.verify(other.session_id) is not None


def test_unknown_session(sessions: SessionStore) -> None:
    assert sessions.verify("missing") is None


def test_purge_removes_expired_and_revoked(sessions: SessionStore, clock) -> None:
    short = sessions.create(account_id=1, ttl_seconds=10)
    revoked = sessions.create(account_id=1, ttl_seconds=3600)
    live = sessions.create(account_id=1, ttl_seconds=3600)
    sessions.invalidate(revoked.session_id)
    clock.advance(seconds=11)
    assert sessions.purge_expired() == 2
    assert sessions.verify(short.session_id) is None
    assert sessions.verify(live.session_id) is not None
