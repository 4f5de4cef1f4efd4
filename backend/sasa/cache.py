"""In-memory listing cache with TTL expiry and tag-based invalidation.

Each entry records the tags it depends on (``user:<id>``, ``job:<id>``,
``providers``, ``admin``). State changes invalidate by tag instead of by
key pattern, so an entry is dropped whenever anything it was built from
changes.

The cache is advisory: every public method swallows its own failures and
behaves like a miss, so callers never need their own error handling.
"""

import time
from collections.abc import Callable, Iterable
from typing import Annotated, Any

from fastapi import Depends
from starlette.requests import HTTPConnection

from .logging_config import get_logger

logger = get_logger("sasa.cache")

PROVIDERS_TAG = "providers"
ADMIN_TAG = "admin"


def user_tag(user_id: str) -> str:
    return f"user:{user_id}"


def job_tag(job_id: str) -> str:
    return f"job:{job_id}"


def listing_key(
    user_id: str,
    category: str | None = None,
    status: str | None = None,
    sort: str | None = None,
) -> str:
    """Cache key for a job listing request."""
    return f"jobs:{user_id}:{category or 'all'}:{status or 'any'}:{sort or 'none'}"


class ListingCache:
    """TTL cache whose entries can be invalidated by tag."""

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.time):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[Any, float, frozenset[str]]] = {}
        self._tag_index: dict[str, set[str]] = {}

    def get(self, key: str) -> Any | None:
        """Get value if present and not expired."""
        try:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at, _ = entry
            if self._clock() - stored_at < self._ttl:
                return value
            self._drop(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
        return None

    def set(self, key: str, value: Any, tags: Iterable[str] = ()) -> None:
        """Store a value along with the tags it depends on."""
        try:
            self._drop(key)
            tag_set = frozenset(tags)
            self._entries[key] = (value, self._clock(), tag_set)
            for tag in tag_set:
                self._tag_index.setdefault(tag, set()).add(key)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    def invalidate_tags(self, *tags: str) -> int:
        """Drop every entry carrying any of the tags. Returns entries removed."""
        removed = 0
        try:
            keys: set[str] = set()
            for tag in tags:
                keys |= self._tag_index.get(tag, set())
            for key in keys:
                if self._drop(key):
                    removed += 1
        except Exception as e:
            logger.warning(f"Cache invalidation failed for {tags}: {e}")
        if removed:
            logger.debug(f"Invalidated {removed} cache entries | tags={tags}")
        return removed

    def invalidate_job(self, job: dict) -> int:
        """Drop listings that may include or exclude this job.

        Provider listings are dropped wholesale: any provider's eligible set
        can change when a job opens, fills or closes.
        """
        tags = [PROVIDERS_TAG, ADMIN_TAG]
        if job.get("id"):
            tags.append(job_tag(job["id"]))
        if job.get("requester_id"):
            tags.append(user_tag(job["requester_id"]))
        if job.get("provider_id"):
            tags.append(user_tag(job["provider_id"]))
        return self.invalidate_tags(*tags)

    def clear(self) -> None:
        """Clear all cached values."""
        self._entries.clear()
        self._tag_index.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _drop(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        for tag in entry[2]:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]
        return True


def get_listing_cache(conn: HTTPConnection) -> ListingCache:
    """FastAPI dependency returning the app-wide listing cache."""
    return conn.app.state.listing_cache


Listings = Annotated[ListingCache, Depends(get_listing_cache)]
