"""Per-provider rate and spend gate.

Every provider call is admitted by ``CostSafetyGuard.check_and_record`` first.
The check and the ledger update happen inside one critical section, so two
concurrent callers can never both pass a ceiling that only one of them fits
under.
"""

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from cinegenius.video_dispatch.config import CostLimits
from cinegenius.video_dispatch.exceptions import (
    CostSafetyError,
    QuotaExceededError,
    RateLimitExceededError,
)
from cinegenius.video_dispatch.logging import log_decision, log_info
from cinegenius.video_dispatch.models import UsageStats

_LOGGER_NAME = "cinegenius.video_dispatch.guard"
_WINDOW = timedelta(hours=1)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UsageLedger:
    """Mutable accounting state owned by a single guard."""

    last_reset_date: datetime
    last_call_time: datetime | None = None
    recent_calls: deque[datetime] = field(default_factory=deque)
    daily_cost: float = 0.0
    monthly_cost: float = 0.0
    total_cost: float = 0.0
    total_calls: int = 0


class CostSafetyGuard:
    """Admission gate enforcing one provider's ``CostLimits``.

    Checks run in a fixed order and stop at the first failure:

    1. minimum interval since the last admitted call
    2. requests in the trailing hour
    3. projected daily spend
    4. projected monthly spend

    A refused call leaves the ledger untouched. Daily and monthly spend are
    reset lazily when the calendar day or month of ``now`` differs from the
    last reset.

    The critical section holds a ``threading.Lock`` and never awaits, so it
    is atomic for both threads and coroutines.
    """

    def __init__(
        self,
        provider: str,
        limits: CostLimits,
        clock: Clock = _utc_now,
    ) -> None:
        self.provider = provider
        self.limits = limits
        self._clock = clock
        self._lock = threading.Lock()
        self._ledger = UsageLedger(last_reset_date=clock())

    def check_and_record(self, estimated_cost: float) -> None:
        """Admit one call costing ``estimated_cost`` USD or raise.

        Raises:
            RateLimitExceededError: The minimum interval has not elapsed.
            QuotaExceededError: The hourly request ceiling is reached.
            CostSafetyError: The daily or monthly spend ceiling would be exceeded.
        """
        with self._lock:
            now = self._clock()
            ledger = self._ledger
            self._apply_resets(now)
            self._prune_window(now)

            if ledger.last_call_time is not None:
                elapsed = (now - ledger.last_call_time).total_seconds()
                if elapsed < self.limits.min_interval_seconds:
                    wait = self.limits.min_interval_seconds - elapsed
                    self._block("min_interval", {"retry_after_seconds": wait})
                    raise RateLimitExceededError(
                        f"{self.provider}: minimum interval of "
                        f"{self.limits.min_interval_seconds}s not elapsed, "
                        f"retry in {wait:.1f}s",
                        provider=self.provider,
                        retry_after_seconds=wait,
                    )

            if len(ledger.recent_calls) >= self.limits.max_requests_per_hour:
                wait = (_WINDOW - (now - ledger.recent_calls[0])).total_seconds()
                self._block(
                    "hourly_limit",
                    {
                        "recent_calls": len(ledger.recent_calls),
                        "retry_after_seconds": wait,
                    },
                )
                raise QuotaExceededError(
                    f"{self.provider}: hourly limit of "
                    f"{self.limits.max_requests_per_hour} requests reached",
                    provider=self.provider,
                    retry_after_seconds=max(wait, 0.0),
                )

            if ledger.daily_cost + estimated_cost > self.limits.max_daily_cost:
                self._block(
                    "daily_cost",
                    {"daily_cost": ledger.daily_cost, "estimated_cost": estimated_cost},
                )
                raise CostSafetyError(
                    f"{self.provider}: daily cost limit ${self.limits.max_daily_cost:.2f} "
                    f"would be exceeded (spent ${ledger.daily_cost:.2f}, "
                    f"call ${estimated_cost:.2f})",
                    provider=self.provider,
                )

            if ledger.monthly_cost + estimated_cost > self.limits.max_monthly_cost:
                self._block(
                    "monthly_cost",
                    {
                        "monthly_cost": ledger.monthly_cost,
                        "estimated_cost": estimated_cost,
                    },
                )
                raise CostSafetyError(
                    f"{self.provider}: monthly cost limit "
                    f"${self.limits.max_monthly_cost:.2f} would be exceeded",
                    provider=self.provider,
                )

            ledger.recent_calls.append(now)
            ledger.last_call_time = now
            ledger.daily_cost += estimated_cost
            ledger.monthly_cost += estimated_cost
            ledger.total_cost += estimated_cost
            ledger.total_calls += 1

            log_decision(
                "info",
                self.provider,
                "allowed",
                "within_limits",
                {
                    "estimated_cost": estimated_cost,
                    "daily_cost": ledger.daily_cost,
                    "recent_calls": len(ledger.recent_calls),
                },
                logger_name=_LOGGER_NAME,
            )

    def report_actual_cost(self, delta: float) -> None:
        """Correct the recorded spend by ``actual - estimated``.

        Book-keeping only: never refuses, and accumulators never go below zero.
        """
        if not delta:
            return
        with self._lock:
            ledger = self._ledger
            ledger.daily_cost = max(0.0, ledger.daily_cost + delta)
            ledger.monthly_cost = max(0.0, ledger.monthly_cost + delta)
            ledger.total_cost = max(0.0, ledger.total_cost + delta)

    def would_admit(self, estimated_cost: float = 0.0) -> bool:
        """Whether ``check_and_record`` would currently pass, without recording."""
        stats = self.get_stats()
        return (
            stats.time_until_next_call == 0
            and stats.daily_cost + estimated_cost <= self.limits.max_daily_cost
            and stats.monthly_cost + estimated_cost <= self.limits.max_monthly_cost
        )

    def get_stats(self) -> UsageStats:
        """Snapshot of the ledger. Does not mutate it."""
        with self._lock:
            now = self._clock()
            ledger = self._ledger
            recent = [t for t in ledger.recent_calls if now - t < _WINDOW]

            daily_cost = ledger.daily_cost
            monthly_cost = ledger.monthly_cost
            if now.date() != ledger.last_reset_date.date():
                daily_cost = 0.0
            if (now.year, now.month) != (
                ledger.last_reset_date.year,
                ledger.last_reset_date.month,
            ):
                monthly_cost = 0.0

            next_available: datetime | None = None
            if ledger.last_call_time is not None:
                next_available = ledger.last_call_time + timedelta(
                    seconds=self.limits.min_interval_seconds
                )
            if len(recent) >= self.limits.max_requests_per_hour:
                window_free = recent[0] + _WINDOW
                if next_available is None or window_free > next_available:
                    next_available = window_free

            wait = 0.0
            if next_available is not None:
                wait = max(0.0, (next_available - now).total_seconds())

            return UsageStats(
                provider=self.provider,
                total_calls=ledger.total_calls,
                last_call_time=ledger.last_call_time,
                hourly_recent_calls=len(recent),
                next_available_time=next_available,
                time_until_next_call=wait,
                daily_cost=daily_cost,
                monthly_cost=monthly_cost,
                total_cost=ledger.total_cost,
                last_reset_date=ledger.last_reset_date,
                max_daily_cost=self.limits.max_daily_cost,
                max_monthly_cost=self.limits.max_monthly_cost,
                max_requests_per_hour=self.limits.max_requests_per_hour,
                min_interval_seconds=self.limits.min_interval_seconds,
            )

    def reset(self) -> None:
        """Clear the ledger. Intended for operators and tests."""
        with self._lock:
            self._ledger = UsageLedger(last_reset_date=self._clock())
        log_info(
            "Cost safety limits reset",
            context={"provider": self.provider},
            logger_name=_LOGGER_NAME,
        )

    def _apply_resets(self, now: datetime) -> None:
        ledger = self._ledger
        last = ledger.last_reset_date
        if (now.year, now.month) != (last.year, last.month):
            ledger.daily_cost = 0.0
            ledger.monthly_cost = 0.0
            ledger.last_reset_date = now
        elif now.date() != last.date():
            ledger.daily_cost = 0.0
            ledger.last_reset_date = now

    def _prune_window(self, now: datetime) -> None:
        calls = self._ledger.recent_calls
        while calls and now - calls[0] >= _WINDOW:
            calls.popleft()

    def _block(self, reason: str, context: dict[str, float]) -> None:
        log_decision(
            "warning",
            self.provider,
            "blocked",
            reason,
            context,
            logger_name=_LOGGER_NAME,
        )
