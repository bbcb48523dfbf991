"""Daily request-credit budget per caller class.

Credits are counted per UTC calendar day.  The day is compared on every read,
so a process that sleeps across midnight resets on its next call instead of
relying on a timer.

Anonymous callers are capped at ``settings.anonymous_daily_credits``;
authenticated callers are never refused but their usage is still recorded.
The caller class is passed on every call so a login or logout takes effect
immediately.

``consume`` is the single check-and-increment entry point and runs under a
lock: under the cooperative execution model a caller that has just seen
``can_consume() is True`` will not see its ``consume()`` fail unless another
call chain consumed in between.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from skiptrace.config import settings

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"
AUTHENTICATED = "authenticated"
CALLER_CLASSES = (ANONYMOUS, AUTHENTICATED)

# Credits charged per upstream endpoint; anything else costs one credit.
API_COSTS: dict[str, int] = {
    "address": 1,
    "name": 2,
    "email": 2,
    "phone": 2,
    "property": 4,
    "person-id": 8,
}
DEFAULT_COST = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def cost_of(api_type: Optional[str]) -> int:
    if api_type is None:
        return DEFAULT_COST
    return API_COSTS.get(api_type, DEFAULT_COST)


@dataclass
class UsageRecord:
    timestamp: float
    api_type: Optional[str]
    cost: int


@dataclass
class UsageDay:
    date: str  # YYYY-MM-DD, UTC
    credits_used: int = 0
    history: list[UsageRecord] = field(default_factory=list)


@dataclass
class UsageState:
    caller_class: str
    credits_used: int
    credits_remaining: Optional[int]
    total_credits: Optional[int]
    reset_date: str
    is_limit_reached: bool
    unlimited: bool
    history: list[UsageRecord]


class UsageLedger(Protocol):
    """Storage for the current day's usage per caller class."""

    def load_usage(self, caller_class: str) -> Optional[UsageDay]: ...

    def save_usage(self, caller_class: str, day: UsageDay) -> None: ...


class InMemoryLedger:
    def __init__(self) -> None:
        self._days: dict[str, UsageDay] = {}

    def load_usage(self, caller_class: str) -> Optional[UsageDay]:
        return self._days.get(caller_class)

    def save_usage(self, caller_class: str, day: UsageDay) -> None:
        self._days[caller_class] = day


class QuotaEngine:
    """Gate and record upstream API calls against the daily budget."""

    def __init__(
        self,
        anonymous_cap: Optional[int] = None,
        ledger: Optional[UsageLedger] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.anonymous_cap = (
            settings.anonymous_daily_credits if anonymous_cap is None else anonymous_cap
        )
        self._ledger = ledger if ledger is not None else InMemoryLedger()
        self._clock = clock
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _today(self) -> str:
        return self._clock().astimezone(timezone.utc).date().isoformat()

    def _day(self, caller_class: str) -> UsageDay:
        """Return today's usage, resetting lazily when the stored date is stale."""
        if caller_class not in CALLER_CLASSES:
            raise ValueError(f"Unknown caller class: {caller_class!r}")
        today = self._today()
        day = self._ledger.load_usage(caller_class)
        if day is None or day.date != today:
            if day is not None:
                logger.info("Resetting %s usage for %s", caller_class, today)
            day = UsageDay(date=today)
            self._ledger.save_usage(caller_class, day)
        return day

    def _fits(self, caller_class: str, day: UsageDay, cost: int) -> bool:
        if caller_class == AUTHENTICATED:
            return True
        return day.credits_used + cost <= self.anonymous_cap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def can_consume(self, caller_class: str, api_type: Optional[str] = None) -> bool:
        """Whether a call of *api_type* would currently be allowed."""
        with self._lock:
            return self._fits(caller_class, self._day(caller_class), cost_of(api_type))

    def consume(self, caller_class: str, api_type: Optional[str] = None) -> bool:
        """Charge one call if the budget allows it; return whether it did.

        A refused charge records nothing and must not be retried by the
        caller.
        """
        cost = cost_of(api_type)
        with self._lock:
            day = self._day(caller_class)
            if not self._fits(caller_class, day, cost):
                logger.warning(
                    "Daily quota exhausted for %s caller (%s used, cost %s)",
                    caller_class,
                    day.credits_used,
                    cost,
                )
                return False
            day.credits_used += cost
            day.history.append(
                UsageRecord(timestamp=self._clock().timestamp(), api_type=api_type, cost=cost)
            )
            self._ledger.save_usage(caller_class, day)
            logger.debug("Charged %s credit(s) to %s caller", cost, caller_class)
            return True

    def usage_state(self, caller_class: str) -> UsageState:
        with self._lock:
            day = self._day(caller_class)
        if caller_class == AUTHENTICATED:
            return UsageState(
                caller_class=caller_class,
                credits_used=day.credits_used,
                credits_remaining=None,
                total_credits=None,
                reset_date=day.date,
                is_limit_reached=False,
                unlimited=True,
                history=list(day.history),
            )
        remaining = max(0, self.anonymous_cap - day.credits_used)
        return UsageState(
            caller_class=caller_class,
            credits_used=day.credits_used,
            credits_remaining=remaining,
            total_credits=self.anonymous_cap,
            reset_date=day.date,
            is_limit_reached=day.credits_used >= self.anonymous_cap,
            unlimited=False,
            history=list(day.history),
        )

    def time_until_reset(self) -> timedelta:
        """Time left until the next UTC midnight."""
        now = self._clock().astimezone(timezone.utc)
        tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return tomorrow - now
