"""Unit tests for auth/store.py -- AccountStore.

Covers:
- create_account defaults (inactive, zero failures, 365-day password lifetime)
- Duplicate email rejection; email match is case-sensitive
- find_* return None on miss; update_account raises on unknown id / field
- record_failed_login threshold and atomicity under concurrent threads
- reset / unlock semantics
- is_password_expired boundary
- Pending MFA login and enrollment TTL enforcement
- Driver failures surface as StoreUnavailableError
"""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest
from sqlalchemy import text

from auth.errors import AccountNotFoundError, DuplicateEmailError, StoreUnavailableError
from auth.models import SUBSCRIPTION_INACTIVE
from auth.store import MAX_FAILED_LOGINS, AccountStore
from tests.support import STRONG_PASSWORD

# ---------------------------------------------------------------------------
# Creation and lookup
# ---------------------------------------------------------------------------


class TestCreateAccount:
    def test_defaults(self, accounts: AccountStore, clock) -> None:
        account = accounts.create_account("new@example.com", STRONG_PASSWORD, company_name="Acme")
        assert account.id is not None
        assert account.subscription_status == SUBSCRIPTION_INACTIVE
        assert account.failed_login_attempts == 0
        assert account.account_locked is False
        assert account.mfa_enabled is False
        assert account.mfa_secret is None
        assert account.name == "new"
        assert account.company_name == "Acme"
        assert account.created_at == clock.now
        assert account.password_expires_at == account.created_at + timedelta(days=365)

    def test_password_is_hashed(self, accounts: AccountStore) -> None:
        account = accounts.create_account("hash@example.com", STRONG_PASSWORD)
        assert account.password_hash != STRONG_PASSWORD
        assert accounts.verify_password(STRONG_PASSWORD, account.password_hash)
        assert not accounts.verify_password("Wrong12345!@#", account.password_hash)

    def test_duplicate_email_rejected(self, accounts: AccountStore) -> None:
        accounts.create_account("dup@example.com", STRONG_PASSWORD)
        with pytest.raises(DuplicateEmailError):
            accounts.create_account("dup@example.com", STRONG_PASSWORD)

    def test_email_match_is_case_sensitive(self, accounts: AccountStore) -> None:
        accounts.create_account("Case@example.com", STRONG_PASSWORD)
        other = accounts.create_account("case@example.com", STRONG_PASSWORD)
        assert other.id is not None
        assert accounts.find_by_email("CASE@example.com") is None

    def test_find_miss_returns_none(self, accounts: AccountStore) -> None:
        assert accounts.find_by_email("nobody@example.com") is None
        assert accounts.find_by_id(9999) is None

    def test_has_accounts(self, accounts: AccountStore) -> None:
        assert accounts.has_accounts() is False
        accounts.create_account("first@example.com", STRONG_PASSWORD)
        assert accounts.has_accounts() is True


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


class TestUpdateAccount:
    def test_merges_fields_and_stamps_updated_at(self, accounts: AccountStore, clock) -> None:
        account = accounts.create_account("upd@example.com", STRONG_PASSWORD)
        clock.advance(minutes=5)
        updated = accounts.update_account(account.id, company_name="NewCo")
        assert updated.company_name == "NewCo"
        assert updated.email == "upd@example.com"
        assert updated.updated_at == clock.now
        assert updated.created_at == account.created_at

    def test_unknown_id_raises(self, accounts: AccountStore) -> None:
        with pytest.raises(AccountNotFoundError):
            accounts.update_account(424242, name="ghost")

    def test_unknown_field_raises(self, accounts: AccountStore) -> None:
        account = accounts.create_account("field@example.com", STRONG_PASSWORD)
        with pytest.raises(ValueError):
            accounts.update_account(account.id, email="other@example.com")

    def test_invalid_subscription_status_raises(self, accounts: AccountStore) -> None:
        account = accounts.create_account("sub@example.com", STRONG_PASSWORD)
        with pytest.raises(ValueError):
            accounts.update_account(account.id, subscription_status="trialing")

    def test_change_password_restarts_lifetime(self, accounts: AccountStore, clock) -> None:
        account = accounts.create_account("rotate@example.com", STRONG_PASSWORD)
        clock.advance(days=200)
        updated = accounts.change_password(account.id, "Xyz98765!@#$")
        assert updated.password_expires_at == clock.now + timedelta(days=365)
        assert accounts.verify_password("Xyz98765!@#$", updated.password_hash)
        assert not accounts.verify_password(STRONG_PASSWORD, updated.password_hash)


# ---------------------------------------------------------------------------
# Failed logins and lockout
# ---------------------------------------------------------------------------


class TestFailedLogins:
    def test_lock_at_threshold(self, accounts: AccountStore) -> None:
        account = accounts.create_account("lock@example.com", STRONG_PASSWORD)
        for expected in range(1, MAX_FAILED_LOGINS):
            updated = accounts.record_failed_login(account.id)
            assert updated.failed_login_attempts == expected
            assert updated.account_locked is False
        updated = accounts.record_failed_login(account.id)
        assert updated.failed_login_attempts == MAX_FAILED_LOGINS
        assert updated.account_locked is True
        assert updated.last_failed_login is not None

    def test_lock_stays_set_past_threshold(self, accounts: AccountStore) -> None:
        account = accounts.create_account("stay@example.com", STRONG_PASSWORD)
        for _ in range(MAX_FAILED_LOGINS + 2):
            updated = accounts.record_failed_login(account.id)
        assert updated.account_locked is True

    def test_reset_does_not_unlock(self, accounts: AccountStore) -> None:
        account = accounts.create_account("reset@example.com", STRONG_PASSWORD)
        for _ in range(MAX_FAILED_LOGINS):
            accounts.record_failed_login(account.id)
        accounts.reset_failed_logins(account.id)
        after = accounts.find_by_id(account.id)
        assert after.failed_login_attempts == 0
        assert after.last_failed_login is None
        assert after.account_locked is True

    def test_unlock_clears_lock_and_counter(self, accounts: AccountStore) -> None:
        account = accounts.create_account("unlock@example.com", STRONG_PASSWORD)
        for _ in range(MAX_FAILED_LOGINS):
            accounts.record_failed_login(account.id)
        unlocked = accounts.unlock(account.id)
        assert unlocked.account_locked is False
        assert unlocked.failed_login_attempts == 0

    def test_record_failed_login_unknown_id(self, accounts: AccountStore) -> None:
        with pytest.raises(AccountNotFoundError):
            accounts.record_failed_login(31337)

    def test_concurrent_failures_are_counted_exactly(self, tmp_path) -> None:
        """Parallel wrong passwords must neither lose nor double-count increments."""
        store = AccountStore(f"sqlite:///{tmp_path / 'concurrency.db'}")
        try:
            account = store.create_account("race@example.com", STRONG_PASSWORD)
            errors: list[Exception] = []

            def worker() -> None:
                try:
                    store.record_failed_login(account.id)
                except Exception as exc:  # surfaced via the errors list below
                    errors.append(exc)

            threads = [threading.Thread(target=worker) for _ in range(12)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert errors == []
            final = store.find_by_id(account.id)
            assert final.failed_login_attempts == 12
            assert final.account_locked is True
        finally:
            store.close()


# ---------------------------------------------------------------------------
# Password expiry
# ---------------------------------------------------------------------------


class TestPasswordExpiry:
    def test_boundary_instant_is_not_expired(self, accounts: AccountStore) -> None:
        account = accounts.create_account("exp@example.com", STRONG_PASSWORD)
        assert accounts.is_password_expired(account, now=account.password_expires_at) is False

    def test_one_microsecond_after_is_expired(self, accounts: AccountStore) -> None:
        account = accounts.create_account("exp2@example.com", STRONG_PASSWORD)
        later = account.password_expires_at + timedelta(microseconds=1)
        assert accounts.is_password_expired(account, now=later) is True

    def test_uses_store_clock(self, accounts: AccountStore, clock) -> None:
        account = accounts.create_account("exp3@example.com", STRONG_PASSWORD)
        clock.advance(days=364)
        assert accounts.is_password_expired(account) is False
        clock.advance(days=2)
        assert accounts.is_password_expired(account) is True


# ---------------------------------------------------------------------------
# Pending MFA state
# ---------------------------------------------------------------------------


class TestPendingState:
    def test_pending_login_expires(self, accounts: AccountStore, clock) -> None:
        account = accounts.create_account("pend@example.com", STRONG_PASSWORD)
        pending = accounts.create_pending_login(account.id, ttl_seconds=300)
        assert accounts.get_pending_login(pending.handle).account_id == account.id
        clock.advance(seconds=301)
        assert accounts.get_pending_login(pending.handle) is None
        assert accounts.consume_pending_login(pending.handle) is False

    def test_pending_login_single_use(self, accounts: AccountStore) -> None:
        account = accounts.create_account("once@example.com", STRONG_PASSWORD)
        pending = accounts.create_pending_login(account.id, ttl_seconds=300)
        assert accounts.consume_pending_login(pending.handle) is True
        assert accounts.consume_pending_login(pending.handle) is False
        assert accounts.get_pending_login(pending.handle) is None

    def test_enrollment_is_replaced_and_expires(self, accounts: AccountStore, clock) -> None:
        account = accounts.create_account("enroll@example.com", STRONG_PASSWORD)
        accounts.put_pending_enrollment(account.id, "A" * 32, ttl_seconds=600)
        accounts.put_pending_enrollment(account.id, "B" * 32, ttl_seconds=600)
        assert accounts.get_pending_enrollment(account.id).secret == "B" * 32
        clock.advance(seconds=601)
        assert accounts.get_pending_enrollment(account.id) is None

    def test_purge_expired(self, accounts: AccountStore, clock) -> None:
        account = accounts.create_account("purge@example.com", STRONG_PASSWORD)
        accounts.create_pending_login(account.id, ttl_seconds=60)
        accounts.create_pending_login(account.id, ttl_seconds=3600)
        accounts.put_pending_enrollment(account.id, "C" * 32, ttl_seconds=60)
        clock.advance(seconds=120)
        assert accounts.purge_expired() == 2


# ---------------------------------------------------------------------------
# Failure translation
# ---------------------------------------------------------------------------


def test_driver_failure_becomes_store_unavailable(accounts: AccountStore) -> None:
    with accounts.engine.begin() as conn:
        conn.execute(text("DROP TABLE accounts"))
    with pytest.raises(StoreUnavailableError):
        accounts.find_by_email("any@example.com")
