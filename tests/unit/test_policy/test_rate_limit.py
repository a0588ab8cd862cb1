"""Tests for the sliding-window rate limiter."""

from __future__ import annotations

import asyncio

import pytest

from termgate.domain.models import PolicyConfig, RateLimiting, TargetPolicy
from termgate.policy.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _policy(**rate: object) -> PolicyConfig:
    return PolicyConfig(
        per_target={"db1": TargetPolicy(max_requests_per_window=3)},
        rate_limiting=RateLimiting(**{"window_ms": 60_000, "per_identity_limit": 5, **rate}),
    )


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_three_per_window(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        policy = _policy()

        results = []
        for _ in range(4):
            results.append(await limiter.check_and_record(policy, "db1", "ops"))
            clock.now += 1
        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[3].retry_after_seconds is not None
        assert results[3].retry_after_seconds > 0
        assert results[3].limit == 3

        clock.now += 60
        fifth = await limiter.check_and_record(policy, "db1", "ops")
        assert fifth.allowed

    @pytest.mark.asyncio
    async def test_retry_after_from_oldest(self) -> None:
        clock = FakeClock(0.0)
        limiter = RateLimiter(clock=clock)
        policy = _policy()
        for _ in range(3):
            await limiter.check_and_record(policy, "db1", "ops")
        clock.now = 45.5
        denied = await limiter.check_and_record(policy, "db1", "ops")
        assert denied.retry_after_seconds == 15

    @pytest.mark.asyncio
    async def test_denied_request_is_not_recorded(self) -> None:
        clock = FakeClock(0.0)
        limiter = RateLimiter(clock=clock)
        policy = _policy()
        for second in range(3):
            clock.now = float(second)
            await limiter.check_and_record(policy, "db1", "ops")
        clock.now = 30.0
        assert not (await limiter.check_and_record(policy, "db1", "ops")).allowed
        clock.now = 60.0
        # Only the request at t=0 has expired
        assert (await limiter.check_and_record(policy, "db1", "ops")).allowed
        assert not (await limiter.check_and_record(policy, "db1", "ops")).allowed

    @pytest.mark.asyncio
    async def test_keys_are_independent(self) -> None:
        limiter = RateLimiter(clock=FakeClock())
        policy = _policy()
        for _ in range(3):
            await limiter.check_and_record(policy, "db1", "ops")
        assert (await limiter.check_and_record(policy, "db1", "alice")).allowed
        assert (await limiter.check_and_record(policy, "other", "ops")).allowed

    @pytest.mark.asyncio
    async def test_falls_back_to_per_identity_limit(self) -> None:
        limiter = RateLimiter(clock=FakeClock())
        policy = _policy(per_identity_limit=2)
        assert (await limiter.check_and_record(policy, "other", "ops")).allowed
        assert (await limiter.check_and_record(policy, "other", "ops")).allowed
        assert not (await limiter.check_and_record(policy, "other", "ops")).allowed

    @pytest.mark.asyncio
    async def test_disabled(self) -> None:
        limiter = RateLimiter(clock=FakeClock())
        policy = _policy(enabled=False)
        for _ in range(10):
            assert (await limiter.check_and_record(policy, "db1", "ops")).allowed

    @pytest.mark.asyncio
    async def test_global_limit_caps_all_identities(self) -> None:
        limiter = RateLimiter(clock=FakeClock())
        policy = _policy(global_limit=4)
        for user in ("a", "b", "c", "d"):
            assert (await limiter.check_and_record(policy, "db1", user)).allowed
        denied = await limiter.check_and_record(policy, "db1", "e")
        assert not denied.allowed
        assert denied.limit == 4

    @pytest.mark.asyncio
    async def test_concurrent_requests_do_not_overshoot(self) -> None:
        limiter = RateLimiter(clock=FakeClock())
        policy = _policy()
        results = await asyncio.gather(
            *(limiter.check_and_record(policy, "db1", "ops") for _ in range(10))
        )
        assert sum(r.allowed for r in results) == 3

    @pytest.mark.asyncio
    async def test_reset(self) -> None:
        limiter = RateLimiter(clock=FakeClock())
        policy = _policy()
        for _ in range(3):
            await limiter.check_and_record(policy, "db1", "ops")
        limiter.reset()
        assert (await limiter.check_and_record(policy, "db1", "ops")).allowed
