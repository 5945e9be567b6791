"""Pending OAuth login state stored in Redis.

Key: oauth_state:{state}
Value: JSON ``PendingLogin``
TTL: 600 seconds by default

Each state is single-use: it is read and deleted in one transaction, so a
replayed callback fails.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import redis.asyncio as redis
from pydantic import BaseModel

from apps.bff_gateway.auth.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


class PendingLogin(BaseModel):
    state: str
    provider: str
    created_at: datetime


class OAuthStateStore:
    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_seconds: int = 600,
        key_prefix: str = "oauth_state:",
    ) -> None:
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    async def store_state(self, state: str, provider: str) -> None:
        pending = PendingLogin(state=state, provider=provider, created_at=datetime.now(UTC))
        try:
            await self.redis.setex(
                f"{self.key_prefix}{state}", self.ttl_seconds, pending.model_dump_json()
            )
        except redis.RedisError as exc:
            logger.error("Redis error storing OAuth state: %s", exc)
            raise StoreUnavailableError("OAuth state storage unavailable") from exc

        logger.info(
            "OAuth state stored",
            extra={"state": state[:8] + "...", "ttl_seconds": self.ttl_seconds},
        )

    async def consume_state(self, state: str) -> PendingLogin | None:
        """Retrieve and delete a pending login; None if unknown, expired or reused."""
        key = f"{self.key_prefix}{state}"
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.get(key)
                pipe.delete(key)
                value, _ = await pipe.execute()
        except redis.RedisError as exc:
            logger.error("Redis error consuming OAuth state: %s", exc)
            raise StoreUnavailableError("OAuth state storage unavailable") from exc

        if not value:
            logger.warning("OAuth state not found", extra={"state": state[:8] + "..."})
            return None
        return PendingLogin.model_validate_json(value)


__all__ = ["OAuthStateStore", "PendingLogin"]
