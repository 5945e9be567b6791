"""Concurrent-session policy.

The read-evict-insert sequence of a login is serialized per subject by a
Redis lock (``RedisSessionStore.subject_lock``), so the limit holds across
every worker process sharing the store.
"""

from __future__ import annotations

from enum import StrEnum


class ConcurrencyPolicy(StrEnum):
    """What happens when a subject already holds the maximum sessions."""

    EVICT_OLDEST = "evict-oldest"
    REJECT_NEW = "reject-new"


__all__ = ["ConcurrencyPolicy"]
