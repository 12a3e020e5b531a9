"""
tests/test_purge_task.py -- The background purge loop in api/main.py.

asyncio.sleep is patched so the loop runs a fixed number of rounds and then
is cancelled, the way lifespan shutdown cancels it.
"""

from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from api.main import _purge_loop


def _sleep_for_rounds(rounds: int):
    calls = {"n": 0}

    async def fake_sleep(_seconds):
        calls["n"] += 1
        if calls["n"] > rounds:
            raise asyncio.CancelledError

    return fake_sleep


def test_purge_loop_survives_unexpected_errors(caplog) -> None:
    account_store = MagicMock()
    account_store.purge_expired.side_effect = [RuntimeError("boom"), 3]
    session_store = MagicMock()
    session_store.purge_expired.return_value = 1
    app = SimpleNamespace(state=SimpleNamespace(account_store=account_store, session_store=session_store))

    with patch("api.main.asyncio.sleep", _sleep_for_rounds(2)):
        with caplog.at_level(logging.INFO, logger="nextgate.api"):
            with pytest.raises(asyncio.CancelledError):
                asyncio.run(_purge_loop(app))

    assert account_store.purge_expired.call_count == 2
    assert "Purge of expired auth state failed" in caplog.text
    assert "Purged 4 expired auth records" in caplog.text
