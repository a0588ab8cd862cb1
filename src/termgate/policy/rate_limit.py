"""Sliding-window request counting per (target, identity).

Each key keeps the timestamps of its admitted requests in arrival order.
Stale timestamps are dropped from the front on every check, so the
window state never grows past the configured limit.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from typing import Callable

from termgate.domain.models import PolicyConfig, RateDecision
from termgate.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)


class RateLimiter:
    """Per-key sliding window limiter.

    Prune, count and append for a target happen under that target's lock,
    so two concurrent requests can never both read a stale count.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[tuple[str, str], deque[float]] = {}
        # Per-target totals across all identities
        self._totals: dict[str, deque[float]] = {}
        self._locks = KeyedLocks()

    @staticmethod
    def _prune(timestamps: deque[float], now: float, window: float) -> deque[float]:
        while timestamps and now - timestamps[0] >= window:
            timestamps.popleft()
        return timestamps

    @staticmethod
    def _retry_after(timestamps: deque[float], now: float, window: float) -> int:
        return max(1, math.ceil(timestamps[0] + window - now))

    async def check_and_record(
        self, policy: PolicyConfig, target_id: str, identity: str
    ) -> RateDecision:
        """Count one request for ``identity`` on ``target_id`` if under the limit."""
        settings = policy.rate_limiting
        if not settings.enabled:
            return RateDecision(allowed=True)

        target_policy = policy.for_target(target_id)
        limit = settings.per_identity_limit
        if target_policy is not None and target_policy.max_requests_per_window:
            limit = target_policy.max_requests_per_window
        window = settings.window_ms / 1000.0

        async with self._locks(target_id):
            now = self._clock()
            timestamps = self._prune(
                self._windows.setdefault((target_id, identity), deque()), now, window
            )
            if len(timestamps) >= limit:
                logger.info("Rate limit hit for %s on %s (%d)", identity, target_id, limit)
                return RateDecision(
                    allowed=False,
                    retry_after_seconds=self._retry_after(timestamps, now, window),
                    reason=f"Rate limit exceeded. Max {limit} commands per {window:g} seconds.",
                    limit=limit,
                )

            if settings.global_limit is not None:
                total = self._prune(self._totals.setdefault(target_id, deque()), now, window)
                if len(total) >= settings.global_limit:
                    logger.info("Target %s reached its total rate limit", target_id)
                    return RateDecision(
                        allowed=False,
                        retry_after_seconds=self._retry_after(total, now, window),
                        reason="Rate limit exceeded for this terminal.",
                        limit=settings.global_limit,
                    )
                total.append(now)
            timestamps.append(now)
            return RateDecision(allowed=True)

    def reset(self) -> None:
        """Forget all windows, equivalent to a process restart."""
        self._windows.clear()
        self._totals.clear()
