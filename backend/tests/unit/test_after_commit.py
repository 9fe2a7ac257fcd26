"""
Unit tests for services/after_commit.py: side effects queued on a session
run after a successful commit, compensations run after a failed one.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from backend.app.services.after_commit import (
    after_commit,
    commit,
    discard,
    on_commit_failure,
)


def _session():
    session = MagicMock()
    session.info = {}
    return session


def test_callbacks_run_in_order_after_commit():
    session, calls = _session(), []
    after_commit(session, calls.append, "first")
    after_commit(session, calls.append, "second")
    on_commit_failure(session, calls.append, "compensation")

    commit(session)

    session.commit.assert_called_once()
    assert calls == ["first", "second"]
    assert session.info == {}


def test_failed_commit_rolls_back_and_runs_compensations():
    session, calls = _session(), []
    session.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection lost"))
    after_commit(session, calls.append, "notify")
    on_commit_failure(session, calls.append, "restore")

    with pytest.raises(OperationalError):
        commit(session)

    session.rollback.assert_called_once()
    assert calls == ["restore"]
    assert session.info == {}


def test_raising_callback_does_not_stop_the_rest():
    session, calls = _session(), []
    broken = MagicMock(side_effect=RuntimeError("boom"))
    after_commit(session, broken)
    after_commit(session, calls.append, "still runs")

    commit(session)

    broken.assert_called_once()
    assert calls == ["still runs"]


def test_discard_drops_queued_work():
    session, calls = _session(), []
    after_commit(session, calls.append, "never")

    discard(session)
    commit(session)

    assert calls == []
