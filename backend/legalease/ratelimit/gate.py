"""
Rate Gate — per-operation-class admission control

Bounds the load that callers can put on the expensive downstream calls
(OCR, text generation). Each operation class has its own policy and its
own set of windows, so exhausting the Q&A budget never blocks uploads.

  admit(op_class, key)
       │
       ▼
  policy lookup ── missing? ──► Allowed (fail open, logged as misconfiguration)
       │
       ▼
  FixedWindowRateLimiter.hit(item, op_class, key)
       │  window starts at the first hit and expires with the storage key
       ▼
  within limit ? ──► Allowed(remaining)
               └──► Denied(retry_after_seconds)  (fail closed)

Window counting is delegated to the `limits` library. The storage's
increment returns the post-increment count, so concurrent requests from
many in-flight pipelines can never over-admit. Denied hits do not move the
window's expiry.

Storage is injected: MemoryStorage by default (expired windows are evicted
by the storage itself), or any `limits` async backend through
RATE_LIMIT_STORAGE_URI (e.g. async+redis://) for multi-instance deployments.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage, Storage
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_URI = "async+memory://"


class OperationClass(str, Enum):
    GENERAL = "general"
    UPLOAD  = "upload"
    AI      = "ai"
    QA      = "qa"


@dataclass(frozen=True)
class RateLimitPolicy:
    points:           int   # admissions per window
    duration_seconds: int   # window length

    def to_item(self, namespace: str) -> RateLimitItem:
        return RateLimitItemPerSecond(self.points, self.duration_seconds, namespace=namespace)


@dataclass(frozen=True)
class Allowed:
    limit:               int | None = None   # None when the class is not configured
    remaining:           int | None = None
    reset_after_seconds: int | None = None

    allowed = True


@dataclass(frozen=True)
class Denied:
    retry_after_seconds: int
    limit:               int
    remaining:           int = 0

    allowed = False


Admission = Union[Allowed, Denied]


@dataclass(frozen=True)
class RateLimitStatus:
    limit:               int
    remaining:           int
    reset_after_seconds: int


class RateGate:
    """
    Explicitly constructed admission controller.

    Created once at application startup (see api.dependencies.build_services)
    and injected into request handlers; there is no module-level singleton.

    `clock` must tell the same time as the storage's expiry stamps
    (wall-clock seconds); it is only used to turn them into countdowns.
    """

    def __init__(
        self,
        policies: dict[OperationClass | str, RateLimitPolicy],
        storage:  Storage | None = None,
        clock:    Callable[[], float] = time.time,
    ) -> None:
        self._policies = {_class_name(c): p for c, p in policies.items()}
        self._items    = {name: p.to_item(namespace="LEGALEASE") for name, p in self._policies.items()}
        self._storage  = storage if storage is not None else MemoryStorage()
        self._limiter  = FixedWindowRateLimiter(self._storage)
        self._clock    = clock

    @classmethod
    def from_settings(
        cls,
        settings,
        storage: Storage | None = None,
        clock:   Callable[[], float] = time.time,
    ) -> "RateGate":
        if storage is None:
            storage = build_storage(settings.rate_limit_storage_uri)
        return cls(
            policies={
                OperationClass.GENERAL: RateLimitPolicy(
                    settings.rate_limit_general_points, settings.rate_limit_general_duration,
                ),
                OperationClass.UPLOAD: RateLimitPolicy(
                    settings.rate_limit_upload_points, settings.rate_limit_upload_duration,
                ),
                OperationClass.AI: RateLimitPolicy(
                    settings.rate_limit_ai_points, settings.rate_limit_ai_duration,
                ),
                OperationClass.QA: RateLimitPolicy(
                    settings.rate_limit_qa_points, settings.rate_limit_qa_duration,
                ),
            },
            storage=storage,
            clock=clock,
        )

    def policy(self, op_class: OperationClass | str) -> RateLimitPolicy | None:
        return self._policies.get(_class_name(op_class))

    async def admit(self, op_class: OperationClass | str, key: str) -> Admission:
        """Consume one point for (op_class, key) if the window has any left."""
        name = _class_name(op_class)
        item = self._items.get(name)
        if item is None:
            logger.error("RateGate | no policy configured for class=%s, allowing request", name)
            return Allowed()

        admitted = await self._limiter.hit(item, name, key)
        stats    = await self._limiter.get_window_stats(item, name, key)
        now      = self._clock()

        if admitted:
            return Allowed(
                limit=item.amount,
                remaining=stats.remaining,
                reset_after_seconds=_seconds_until(stats.reset_time, now),
            )

        retry_after = _seconds_until(stats.reset_time, now)
        logger.warning(
            "RateGate | denied class=%s key=%s limit=%d retry_after=%ds",
            name, key, item.amount, retry_after,
        )
        return Denied(retry_after_seconds=retry_after, limit=item.amount)

    async def status(self, op_class: OperationClass | str, key: str) -> RateLimitStatus | None:
        """Current quota for (op_class, key) without consuming a point."""
        name = _class_name(op_class)
        item = self._items.get(name)
        if item is None:
            return None

        stats = await self._limiter.get_window_stats(item, name, key)
        if stats.remaining >= item.amount:
            # no hits in a live window
            return RateLimitStatus(item.amount, item.amount, 0)
        return RateLimitStatus(
            limit=item.amount,
            remaining=stats.remaining,
            reset_after_seconds=_seconds_until(stats.reset_time, self._clock()),
        )

    async def reset(self, op_class: OperationClass | str, key: str) -> bool:
        """Drop the window for (op_class, key). Returns False for unknown classes."""
        name = _class_name(op_class)
        item = self._items.get(name)
        if item is None:
            return False
        await self._limiter.clear(item, name, key)
        logger.info("RateGate | reset class=%s key=%s", name, key)
        return True


def build_storage(uri: str | None) -> Storage:
    """MemoryStorage for the default URI, otherwise whatever `limits` resolves."""
    if not uri or uri == DEFAULT_STORAGE_URI:
        return MemoryStorage()
    storage = storage_from_string(uri)
    if not isinstance(storage, Storage):
        raise ValueError(f"Rate limit storage must be an async+ scheme, got: {uri}")
    logger.info("RateGate | storage=%s", uri.split("://", 1)[0])
    return storage


def _class_name(op_class: OperationClass | str) -> str:
    return op_class.value if isinstance(op_class, OperationClass) else str(op_class)


def _seconds_until(reset_at: float, now: float) -> int:
    return max(1, math.ceil(reset_at - now))
