"""Tests for CostSafetyGuard."""

import threading
from datetime import datetime, timezone

import pytest

from cinegenius.video_dispatch.config import DEFAULT_COST_LIMITS, CostLimits
from cinegenius.video_dispatch.exceptions import (
    CostSafetyError,
    QuotaExceededError,
    RateLimitExceededError,
)
from cinegenius.video_dispatch.guard import CostSafetyGuard


@pytest.fixture
def limits():
    return CostLimits(
        min_interval_seconds=10,
        max_requests_per_hour=3,
        max_daily_cost=1.0,
        max_monthly_cost=2.0,
    )


@pytest.fixture
def guard(limits, clock):
    return CostSafetyGuard("runway", limits, clock=clock)


def test_first_call_is_admitted_and_recorded(guard, clock):
    guard.check_and_record(0.25)

    stats = guard.get_stats()
    assert stats.total_calls == 1
    assert stats.daily_cost == pytest.approx(0.25)
    assert stats.monthly_cost == pytest.approx(0.25)
    assert stats.last_call_time == clock.now
    assert stats.hourly_recent_calls == 1


def test_min_interval_blocks_even_free_calls(guard, clock):
    guard.check_and_record(0.1)
    clock.advance(4)

    with pytest.raises(RateLimitExceededError) as exc_info:
        guard.check_and_record(0.0)

    assert exc_info.value.provider == "runway"
    assert exc_info.value.retry_after_seconds == pytest.approx(6)


def test_min_interval_allows_call_once_elapsed(guard, clock):
    guard.check_and_record(0.1)
    clock.advance(10)

    guard.check_and_record(0.1)

    assert guard.get_stats().total_calls == 2


def test_refused_call_leaves_ledger_untouched(guard, clock):
    guard.check_and_record(0.9)
    before = guard.get_stats()
    clock.advance(30)

    with pytest.raises(CostSafetyError):
        guard.check_and_record(0.2)

    after = guard.get_stats()
    assert after.total_calls == before.total_calls
    assert after.daily_cost == before.daily_cost
    assert after.last_call_time == before.last_call_time
    assert after.hourly_recent_calls == before.hourly_recent_calls


def test_hourly_ceiling(guard, clock):
    for _ in range(3):
        guard.check_and_record(0.01)
        clock.advance(60)

    with pytest.raises(QuotaExceededError) as exc_info:
        guard.check_and_record(0.01)

    # Oldest call was 180s ago, so the window frees up in 3420s
    assert exc_info.value.retry_after_seconds == pytest.approx(3420)


def test_hourly_window_slides(guard, clock):
    for _ in range(3):
        guard.check_and_record(0.01)
        clock.advance(60)

    clock.advance(3600)
    guard.check_and_record(0.01)

    assert guard.get_stats().hourly_recent_calls == 1


def test_check_order_interval_before_hourly(limits, clock):
    guard = CostSafetyGuard(
        "seedance", limits.model_copy(update={"max_requests_per_hour": 1}), clock=clock
    )
    guard.check_and_record(0.01)
    clock.advance(1)

    with pytest.raises(RateLimitExceededError):
        guard.check_and_record(0.01)


def test_check_order_hourly_before_cost(limits, clock):
    guard = CostSafetyGuard(
        "seedance",
        limits.model_copy(update={"max_requests_per_hour": 1, "max_daily_cost": 0.01}),
        clock=clock,
    )
    guard.check_and_record(0.01)
    clock.advance(60)

    with pytest.raises(QuotaExceededError):
        guard.check_and_record(5.0)


def test_daily_ceiling_is_inclusive(guard, clock):
    guard.check_and_record(0.6)
    clock.advance(20)
    guard.check_and_record(0.4)

    assert guard.get_stats().daily_cost == pytest.approx(1.0)


def test_daily_cost_never_exceeds_ceiling(clock):
    limits = CostLimits(
        min_interval_seconds=0,
        max_requests_per_hour=1000,
        max_daily_cost=1.0,
        max_monthly_cost=100.0,
    )
    guard = CostSafetyGuard("runway", limits, clock=clock)
    costs = [0.13, 0.3, 0.07, 0.5, 0.21, 0.05, 0.4, 0.02, 0.33, 0.11] * 3

    for cost in costs:
        try:
            guard.check_and_record(cost)
        except CostSafetyError:
            pass
        assert guard.get_stats().daily_cost <= limits.max_daily_cost + 1e-9
        clock.advance(1)


def test_admitted_calls_respect_min_interval(clock):
    guard = CostSafetyGuard("stable-video", DEFAULT_COST_LIMITS["stable-video"], clock=clock)
    admitted = []

    for _ in range(40):
        try:
            guard.check_and_record(0.04)
            admitted.append(clock.now)
        except RateLimitExceededError:
            pass
        clock.advance(3)

    gaps = [(b - a).total_seconds() for a, b in zip(admitted, admitted[1:])]
    assert admitted
    assert all(gap >= 10 for gap in gaps)


def test_monthly_ceiling(clock):
    limits = CostLimits(
        min_interval_seconds=0,
        max_requests_per_hour=100,
        max_daily_cost=10,
        max_monthly_cost=1.5,
    )
    guard = CostSafetyGuard("seedance", limits, clock=clock)
    guard.check_and_record(1.0)
    clock.advance(86400)

    with pytest.raises(CostSafetyError, match="monthly"):
        guard.check_and_record(1.0)


def test_daily_cost_resets_on_new_day(guard, clock):
    clock.now = datetime(2026, 3, 10, 23, 59, 0, tzinfo=timezone.utc)
    guard.reset()
    guard.check_and_record(0.9)

    clock.now = datetime(2026, 3, 11, 0, 1, 0, tzinfo=timezone.utc)
    guard.check_and_record(0.9)

    stats = guard.get_stats()
    assert stats.daily_cost == pytest.approx(0.9)
    assert stats.monthly_cost == pytest.approx(1.8)


def test_monthly_cost_resets_on_new_month(guard, clock):
    clock.now = datetime(2026, 3, 31, 12, 0, 0, tzinfo=timezone.utc)
    guard.reset()
    guard.check_and_record(0.9)

    clock.now = datetime(2026, 4, 1, 12, 0, 0, tzinfo=timezone.utc)
    stats = guard.get_stats()
    assert stats.daily_cost == 0
    assert stats.monthly_cost == 0

    guard.check_and_record(0.9)
    assert guard.get_stats().monthly_cost == pytest.approx(0.9)
    assert guard.get_stats().total_cost == pytest.approx(1.8)


def test_report_actual_cost_adjusts_and_floors_at_zero(guard):
    guard.check_and_record(0.5)

    guard.report_actual_cost(-0.2)
    assert guard.get_stats().daily_cost == pytest.approx(0.3)

    guard.report_actual_cost(-5.0)
    stats = guard.get_stats()
    assert stats.daily_cost == 0
    assert stats.monthly_cost == 0
    assert stats.total_cost == 0


def test_stats_report_next_available_time(guard, clock):
    assert guard.get_stats().time_until_next_call == 0

    guard.check_and_record(0.1)
    clock.advance(3)

    stats = guard.get_stats()
    assert stats.time_until_next_call == pytest.approx(7)
    assert stats.max_daily_cost == 1.0
    assert guard.would_admit() is False

    clock.advance(7)
    assert guard.would_admit() is True
    assert guard.would_admit(5.0) is False


def test_reset_clears_ledger(guard):
    guard.check_and_record(0.5)
    guard.reset()

    stats = guard.get_stats()
    assert stats.total_calls == 0
    assert stats.daily_cost == 0
    assert stats.last_call_time is None


def test_concurrent_callers_cannot_overshoot(clock):
    limits = CostLimits(
        min_interval_seconds=0,
        max_requests_per_hour=10_000,
        max_daily_cost=1.0,
        max_monthly_cost=100.0,
    )
    guard = CostSafetyGuard("runway", limits, clock=clock)
    admitted = []
    start = threading.Barrier(20)

    def worker():
        start.wait()
        for _ in range(10):
            try:
                guard.check_and_record(0.03)
                admitted.append(1)
            except CostSafetyError:
                pass

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(admitted) == 33
    assert guard.get_stats().daily_cost <= 1.0 + 1e-9
