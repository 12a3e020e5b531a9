"""
auth/errors.py -- Exceptions for failures that are not login outcomes.

Expected login results (bad credentials, locked account, expired password,
missing subscription, MFA steps) are AuthOutcome values, not exceptions.
Only the cases below are raised:

  DuplicateEmailError    -- signup with an email that already exists (409)
  AccountNotFoundError   -- admin/store operation on an unknown id (404)
  StoreUnavailableError  -- persistence failure; surfaced as an opaque 500
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for auth package errors."""


class DuplicateEmailError(AuthError):
    def __init__(self, email: str) -> None:
        super().__init__(f"An account with email {email!r} already exists.")
        self.email = email


class AccountNotFoundError(AuthError):
    def __init__(self, account_id: int) -> None:
        super().__init__(f"Account {account_id} not found.")
        self.account_id = account_id


class StoreUnavailableError(AuthError):
    """The backing database could not be reached or rejected the operation.

    The message is for logs only. The API layer never copies it into a
    response body.
    """
