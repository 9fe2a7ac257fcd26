"""
services/after_commit.py — Side effects that wait for the route's commit.

Services flush but never commit, so anything that leaves the process (a chat
message, an object-store delete) must not run from inside the service: if the
commit then fails, the outside world would see a change the database never
kept. Services queue such work on the session instead:

    after_commit(session, notifier.send_bill_notification, target, bill, amount)
    on_commit_failure(session, _restore, store, token, previous_status)

and the route finishes the request with commit(db.session), which commits,
then runs the after-commit queue, or rolls back and runs the failure queue
before re-raising.

Both queues live in Session.info. The app factory registers a teardown hook
that discards them, so work queued by a request that raised before its
commit never runs.
"""

from __future__ import annotations

import logging
from functools import partial

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

_AFTER_COMMIT = "after_commit"
_ON_FAILURE = "on_commit_failure"


def after_commit(session, callback, *args, **kwargs) -> None:
    session.info.setdefault(_AFTER_COMMIT, []).append(partial(callback, *args, **kwargs))


def on_commit_failure(session, callback, *args, **kwargs) -> None:
    session.info.setdefault(_ON_FAILURE, []).append(partial(callback, *args, **kwargs))


def discard(session) -> None:
    """Drops both queues without running them."""
    session.info.pop(_AFTER_COMMIT, None)
    session.info.pop(_ON_FAILURE, None)


def commit(session) -> None:
    """
    Commits, then runs the queued side effects in the order they were added.

    On a failed commit the session is rolled back, the compensations run and
    the original error propagates. Queued callbacks handle their own errors;
    one that raises anyway is logged and the rest still run.
    """
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        compensations = session.info.pop(_ON_FAILURE, [])
        session.info.pop(_AFTER_COMMIT, None)
        _run(compensations, "commit-failure")
        raise

    callbacks = session.info.pop(_AFTER_COMMIT, [])
    session.info.pop(_ON_FAILURE, None)
    _run(callbacks, "after-commit")


def _run(callbacks, stage: str) -> None:
    for callback in callbacks:
        try:
            callback()
        except Exception:
            logger.exception("%s callback %r failed", stage, callback)
