"""Server-side session store backed by Redis with encryption at rest.

Redis schema:
  Key: {session_prefix}{session_id}
  Value: Fernet-encrypted JSON ``Session``
  TTL: idle timeout, refreshed on every touch

  Key: {subject_prefix}{subject}
  Value: sorted set of session ids scored by creation time (concurrency index)

  Key: {lock_prefix}{subject}
  Value: redis-py lock token, held while a login of the subject is admitted

Idle expiry is decided lazily on read against the store clock; the Redis TTL
only garbage-collects records nobody reads again.
"""

from __future__ import annotations

import base64
import logging
import secrets
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

import redis.asyncio as redis
from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from apps.bff_gateway.auth.exceptions import StoreUnavailableError
from apps.bff_gateway.auth.token_codec import decode_secret, encode_secret, generate_secret

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class Principal(BaseModel):
    """Identity snapshot taken once at login and never refreshed."""

    model_config = ConfigDict(frozen=True)

    subject: str
    attributes: dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """Server-held session record."""

    session_id: str
    principal: Principal
    csrf_secret: str
    created_at: datetime
    last_touched: datetime
    idle_timeout_seconds: int

    @property
    def csrf_secret_bytes(self) -> bytes:
        return decode_secret(self.csrf_secret)

    def is_idle_expired(self, now: datetime) -> bool:
        return now - self.last_touched >= timedelta(seconds=self.idle_timeout_seconds)


def mask_session_id(session_id: str) -> str:
    return session_id[:8] + "..."


class RedisSessionStore:
    """Session store with a per-subject index for concurrency limiting.

    Every operation touches at most one session record in a single Redis
    command or MULTI transaction, so a partially written record is never
    observable. Concurrent touches of the same record are last-writer-wins.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        encryption_keys: list[bytes],
        idle_timeout: timedelta,
        session_prefix: str = "bff_session:",
        subject_prefix: str = "bff_subject:",
        lock_prefix: str = "bff_subject_lock:",
        lock_timeout_seconds: int = 10,
        lock_blocking_timeout_seconds: float = 5.0,
        clock: Clock = utc_now,
    ) -> None:
        self.redis = redis_client
        self.fernet = MultiFernet([Fernet(_normalize_fernet_key(k)) for k in encryption_keys])
        self.idle_timeout = idle_timeout
        self.session_prefix = session_prefix
        self.subject_prefix = subject_prefix
        self.lock_prefix = lock_prefix
        self.lock_timeout_seconds = lock_timeout_seconds
        self.lock_blocking_timeout_seconds = lock_blocking_timeout_seconds
        self.clock = clock

    @property
    def idle_timeout_seconds(self) -> int:
        return int(self.idle_timeout.total_seconds())

    def _session_key(self, session_id: str) -> str:
        return f"{self.session_prefix}{session_id}"

    def _subject_key(self, subject: str) -> str:
        return f"{self.subject_prefix}{subject}"

    def _encrypt(self, session: Session) -> bytes:
        return self.fernet.encrypt(session.model_dump_json().encode("utf-8"))

    def _decrypt(self, data: bytes) -> Session | None:
        try:
            return Session.model_validate_json(self.fernet.decrypt(data))
        except (InvalidToken, ValidationError) as exc:
            logger.warning(
                "Discarding unreadable session record",
                extra={"error_type": type(exc).__name__},
            )
            return None

    async def create(self, principal: Principal) -> Session:
        """Create and index a session with a fresh id and CSRF secret."""
        now = self.clock()
        session = Session(
            session_id=secrets.token_urlsafe(32),
            principal=principal,
            csrf_secret=encode_secret(generate_secret()),
            created_at=now,
            last_touched=now,
            idle_timeout_seconds=self.idle_timeout_seconds,
        )
        subject_key = self._subject_key(principal.subject)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.setex(
                    self._session_key(session.session_id),
                    self.idle_timeout_seconds,
                    self._encrypt(session),
                )
                pipe.zadd(subject_key, {session.session_id: now.timestamp()})
                pipe.expire(subject_key, self.idle_timeout_seconds)
                await pipe.execute()
        except redis.RedisError as exc:
            logger.error("Redis error during session creation: %s", exc)
            raise StoreUnavailableError("Session creation failed - storage unavailable") from exc

        logger.info(
            "Session created",
            extra={
                "session_id": mask_session_id(session.session_id),
                "subject": principal.subject,
            },
        )
        return session

    async def get(self, session_id: str) -> Session | None:
        """Return the session, or None when absent, unreadable or idle-expired."""
        try:
            data = await self.redis.get(self._session_key(session_id))
        except redis.RedisError as exc:
            logger.error("Redis error during session lookup: %s", exc)
            raise StoreUnavailableError("Session lookup failed - storage unavailable") from exc

        if not data:
            return None

        session = self._decrypt(data)
        if session is None or session.session_id != session_id:
            await self.invalidate(session_id)
            return None

        if session.is_idle_expired(self.clock()):
            logger.info(
                "Session idle timeout",
                extra={
                    "session_id": mask_session_id(session_id),
                    "subject": session.principal.subject,
                },
            )
            await self.invalidate(session_id, subject=session.principal.subject)
            return None

        return session

    async def touch(self, session: Session) -> Session | None:
        """Reset the idle timer of an already-loaded session.

        Returns:
            The refreshed record, or None if it went idle or was removed
            since it was loaded
        """
        now = self.clock()
        session_id = session.session_id
        if session.is_idle_expired(now):
            await self.invalidate(session_id, subject=session.principal.subject)
            return None

        updated = session.model_copy(update={"last_touched": now})
        subject_key = self._subject_key(session.principal.subject)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                # xx: never resurrect a record invalidated since it was loaded
                pipe.set(
                    self._session_key(session_id),
                    self._encrypt(updated),
                    ex=self.idle_timeout_seconds,
                    xx=True,
                )
                pipe.expire(subject_key, self.idle_timeout_seconds)
                written, _ = await pipe.execute()
        except redis.RedisError as exc:
            logger.error("Redis error during session touch: %s", exc)
            raise StoreUnavailableError("Session touch failed - storage unavailable") from exc

        return updated if written else None

    @asynccontextmanager
    async def subject_lock(self, subject: str) -> AsyncIterator[None]:
        """Hold the subject's login lock, shared by every process using this Redis.

        Raises:
            StoreUnavailableError: If the lock cannot be acquired in time or
                Redis is unreachable
        """
        lock_key = f"{self.lock_prefix}{subject}"
        lock = self.redis.lock(
            lock_key,
            timeout=self.lock_timeout_seconds,
            blocking_timeout=self.lock_blocking_timeout_seconds,
        )
        try:
            acquired = await lock.acquire()
        except redis.RedisError as exc:
            logger.error(
                "Failed to acquire subject login lock",
                extra={"subject": subject, "error": str(exc)},
            )
            raise StoreUnavailableError("Login lock unavailable - storage unavailable") from exc

        if not acquired:
            logger.error(
                "Subject login lock acquisition timed out",
                extra={"subject": subject, "lock_key": lock_key},
            )
            raise StoreUnavailableError("Login lock could not be acquired in time")

        try:
            yield
        finally:
            try:
                await lock.release()
            except redis.RedisError as exc:
                # The lease timeout frees the key on its own.
                logger.warning(
                    "Failed to release subject login lock",
                    extra={"subject": subject, "error": str(exc)},
                )

    async def invalidate(self, session_id: str, subject: str | None = None) -> None:
        """Delete the session and drop it from its subject's index."""
        key = self._session_key(session_id)
        try:
            if subject is None:
                data = await self.redis.get(key)
                session = self._decrypt(data) if data else None
                subject = session.principal.subject if session else None

            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                if subject is not None:
                    pipe.zrem(self._subject_key(subject), session_id)
                await pipe.execute()
        except redis.RedisError as exc:
            logger.error("Redis error during session invalidation: %s", exc)
            raise StoreUnavailableError(
                "Session invalidation failed - storage unavailable"
            ) from exc

        logger.info(
            "Session invalidated",
            extra={"session_id": mask_session_id(session_id), "subject": subject},
        )

    async def list_by_principal(self, subject: str) -> list[Session]:
        """Return the subject's live sessions, oldest first.

        Index entries whose record has expired or vanished are pruned.
        """
        subject_key = self._subject_key(subject)
        try:
            members = await self.redis.zrange(subject_key, 0, -1)
        except redis.RedisError as exc:
            logger.error("Redis error during subject index read: %s", exc)
            raise StoreUnavailableError("Session listing failed - storage unavailable") from exc

        sessions: list[Session] = []
        stale: list[str] = []
        for member in members:
            session_id = member.decode("utf-8") if isinstance(member, bytes) else str(member)
            session = await self.get(session_id)
            if session is None:
                stale.append(session_id)
            else:
                sessions.append(session)

        if stale:
            try:
                await self.redis.zrem(subject_key, *stale)
            except redis.RedisError as exc:
                logger.error("Redis error during subject index prune: %s", exc)
                raise StoreUnavailableError(
                    "Session listing failed - storage unavailable"
                ) from exc

        return sorted(sessions, key=lambda s: s.created_at)


def _normalize_fernet_key(key: bytes) -> bytes:
    if len(key) == 44:
        return key
    return base64.urlsafe_b64encode(key)


__all__ = [
    "Clock",
    "Principal",
    "RedisSessionStore",
    "Session",
    "mask_session_id",
    "utc_now",
]
