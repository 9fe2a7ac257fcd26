"""
repositories/invitation_store.py — Volatile invitation store backed by redis.

Layout:
  invitation:<token>              JSON record, native TTL = ttl + grace
  apartment_invitations:<id>      SET of tokens issued for the apartment

The record keeps its own `expires_at`; the redis TTL only garbage-collects
it `grace` later, so a late redemption can still be told "expired" (Gone)
rather than "unknown" (NotFound).

Status changes go through `transition()`, a WATCH/MULTI compare-and-set:
two callers racing on one token are ordered by redis, and the loser sees
the winner's status on its retry.

This module raises its own exceptions (InvitationMissing,
InvitationStateError). Classifying them into AppError is the service's job.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

PENDING   = "pending"
NOTIFIED  = "notified"
CONSUMED  = "consumed"
EXPIRED   = "expired"

ACTIVE_STATUSES = frozenset({PENDING, NOTIFIED})

_KEY_PREFIX = "invitation:"
_APARTMENT_INDEX_PREFIX = "apartment_invitations:"


class InvitationMissing(Exception):
    """No record is stored under the token."""


class InvitationStateError(Exception):
    """The record exists but is not in a state that allows the transition."""

    def __init__(self, invitation: "Invitation", status: str) -> None:
        super().__init__(f"invitation is {status}")
        self.invitation = invitation
        self.status = status


@dataclass(frozen=True)
class Invitation:
    token: str
    sender_id: int
    receiver_username: str
    apartment_id: int
    expires_at: datetime
    status: str = PENDING
    created_at: datetime | None = None

    def effective_status(self, now: datetime) -> str:
        """Stored status, except that an active record past expires_at reads as expired."""
        if self.status in ACTIVE_STATUSES and now >= self.expires_at:
            return EXPIRED
        return self.status

    def to_json(self) -> str:
        payload = asdict(self)
        payload["expires_at"] = self.expires_at.isoformat()
        payload["created_at"] = self.created_at.isoformat() if self.created_at else None
        return json.dumps(payload)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Invitation":
        payload = json.loads(raw)
        created_at = payload.get("created_at")
        return cls(
            token=payload["token"],
            sender_id=int(payload["sender_id"]),
            receiver_username=payload["receiver_username"],
            apartment_id=int(payload["apartment_id"]),
            expires_at=datetime.fromisoformat(payload["expires_at"]),
            status=payload.get("status", PENDING),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InvitationStore:
    """
    Redis-backed invitation records.

    Created unbound at import time (see extensions.py) and bound to a redis
    client in init_app(). Tests bind any redis-compatible client directly.
    """

    def __init__(
            self,
            client=None,
            ttl: timedelta = timedelta(hours=24),
            grace: timedelta = timedelta(hours=1),
    ) -> None:
        self._client = client
        self.ttl = ttl
        self.grace = grace

    def init_app(self, app, client=None) -> None:
        self.ttl = app.config.get("INVITATION_TTL", self.ttl)
        self.grace = app.config.get("INVITATION_GRACE", self.grace)

        if client is None:
            import redis

            timeout = app.config.get("REDIS_TIMEOUT_SECONDS", 2.0)
            pool = redis.ConnectionPool.from_url(
                app.config["REDIS_URL"],
                max_connections=app.config.get("REDIS_MAX_CONNECTIONS", 20),
                socket_connect_timeout=timeout,
                socket_timeout=timeout,
                health_check_interval=30,
                retry_on_timeout=True,
                decode_responses=True,
            )
            client = redis.Redis(connection_pool=pool)

        self._client = client
        app.extensions["invitation_store"] = self

    @property
    def client(self):
        if self._client is None:
            raise RuntimeError("InvitationStore used before init_app().")
        return self._client

    # ── Keys ───────────────────────────────────────────────────────────────

    @staticmethod
    def _key(token: str) -> str:
        return f"{_KEY_PREFIX}{token}"

    @staticmethod
    def _apartment_key(apartment_id: int) -> str:
        return f"{_APARTMENT_INDEX_PREFIX}{apartment_id}"

    def _retention(self) -> timedelta:
        return self.ttl + self.grace

    # ── Operations ─────────────────────────────────────────────────────────

    def create(
            self,
            token: str,
            sender_id: int,
            receiver_username: str,
            apartment_id: int,
            now: datetime | None = None,
    ) -> Invitation:
        """Stores a new pending invitation. Raises redis errors as-is."""
        now = now or _now()
        invitation = Invitation(
            token=token,
            sender_id=sender_id,
            receiver_username=receiver_username,
            apartment_id=apartment_id,
            expires_at=now + self.ttl,
            status=PENDING,
            created_at=now,
        )
        retention = int(self._retention().total_seconds())

        pipe = self.client.pipeline()
        # nx: a colliding token must never overwrite an existing record.
        pipe.set(self._key(token), invitation.to_json(), ex=retention, nx=True)
        pipe.sadd(self._apartment_key(apartment_id), token)
        pipe.expire(self._apartment_key(apartment_id), retention)
        created, _, _ = pipe.execute()
        if not created:
            raise ValueError("invitation token collision")

        return invitation

    def get(self, token: str) -> Invitation | None:
        raw = self.client.get(self._key(token))
        if raw is None:
            return None
        return Invitation.from_json(raw)

    def transition(
            self,
            token: str,
            allowed_from: frozenset[str] | set[str],
            new_status: str,
            now: datetime | None = None,
    ) -> Invitation:
        """
        Atomically moves the record at `token` from one of `allowed_from` to
        `new_status`, keeping its TTL.

        Raises:
          InvitationMissing     — nothing stored under the token
          InvitationStateError  — current (effective) status not in allowed_from
        """
        key = self._key(token)
        now = now or _now()

        def _apply(pipe):
            raw = pipe.get(key)
            if raw is None:
                raise InvitationMissing(token)

            invitation = Invitation.from_json(raw)
            current = invitation.effective_status(now)
            if current not in allowed_from:
                raise InvitationStateError(invitation, current)

            updated = replace(invitation, status=new_status)
            pipe.multi()
            pipe.set(key, updated.to_json(), keepttl=True)
            return updated

        return self.client.transaction(_apply, key, value_from_callable=True)

    def active_for(
            self,
            apartment_id: int,
            receiver_username: str,
            now: datetime | None = None,
    ) -> list[Invitation]:
        """Returns the non-terminal invitations for one (apartment, receiver) pair."""
        now = now or _now()
        index_key = self._apartment_key(apartment_id)
        tokens = sorted(self.client.smembers(index_key))
        if not tokens:
            return []

        records = self.client.mget([self._key(t) for t in tokens])
        active: list[Invitation] = []
        stale: list[str] = []
        for token, raw in zip(tokens, records):
            if raw is None:
                stale.append(token)
                continue
            invitation = Invitation.from_json(raw)
            if (
                invitation.receiver_username == receiver_username
                and invitation.effective_status(now) in ACTIVE_STATUSES
            ):
                active.append(invitation)

        if stale:
            self.client.srem(index_key, *stale)
        return active
