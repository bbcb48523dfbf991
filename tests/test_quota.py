"""Tests for the daily quota engine.

A mutable clock is injected so UTC-day rollover can be exercised without
waiting for midnight.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from skiptrace.quota import (
    ANONYMOUS,
    API_COSTS,
    AUTHENTICATED,
    InMemoryLedger,
    QuotaEngine,
    cost_of,
)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 14, 23, 0, tzinfo=timezone.utc))


@pytest.fixture()
def engine(clock) -> QuotaEngine:
    return QuotaEngine(anonymous_cap=100, ledger=InMemoryLedger(), clock=clock)


# ---------------------------------------------------------------------------
# Anonymous cap
# ---------------------------------------------------------------------------

class TestAnonymousCap:
    def test_hundredth_succeeds_hundred_first_fails(self, engine) -> None:
        results = [engine.consume(ANONYMOUS) for _ in range(100)]
        assert all(results)
        assert engine.can_consume(ANONYMOUS) is False
        assert engine.consume(ANONYMOUS) is False

    def test_refused_charge_records_nothing(self, engine) -> None:
        for _ in range(100):
            engine.consume(ANONYMOUS)
        engine.consume(ANONYMOUS)
        state = engine.usage_state(ANONYMOUS)
        assert state.credits_used == 100
        assert len(state.history) == 100
        assert state.is_limit_reached

    def test_rollover_resets(self, engine, clock) -> None:
        for _ in range(100):
            engine.consume(ANONYMOUS)
        assert engine.consume(ANONYMOUS) is False
        clock.advance(hours=1, minutes=1)
        assert engine.consume(ANONYMOUS) is True
        state = engine.usage_state(ANONYMOUS)
        assert state.credits_used == 1
        assert state.reset_date == "2025-03-15"

    def test_can_consume_then_consume_agree(self, engine) -> None:
        for _ in range(99):
            engine.consume(ANONYMOUS)
        assert engine.can_consume(ANONYMOUS)
        assert engine.consume(ANONYMOUS)

    def test_api_costs(self, engine) -> None:
        assert engine.consume(ANONYMOUS, "person-id")
        assert engine.usage_state(ANONYMOUS).credits_used == API_COSTS["person-id"]

    def test_expensive_call_refused_near_cap(self, engine) -> None:
        for _ in range(95):
            engine.consume(ANONYMOUS)
        assert engine.can_consume(ANONYMOUS, "person-id") is False
        assert engine.consume(ANONYMOUS, "address") is True

    def test_concurrent_consume_never_overspends(self, clock) -> None:
        engine = QuotaEngine(anonymous_cap=50, clock=clock)
        granted: list[bool] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(20):
                ok = engine.consume(ANONYMOUS)
                with lock:
                    granted.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert granted.count(True) == 50
        assert engine.usage_state(ANONYMOUS).credits_used == 50


# ---------------------------------------------------------------------------
# Authenticated callers
# ---------------------------------------------------------------------------

class TestAuthenticated:
    def test_never_refused_but_recorded(self, engine) -> None:
        for _ in range(150):
            assert engine.consume(AUTHENTICATED)
        state = engine.usage_state(AUTHENTICATED)
        assert state.unlimited
        assert state.credits_used == 150
        assert state.credits_remaining is None
        assert not state.is_limit_reached

    def test_class_switch_is_immediate(self, engine) -> None:
        for _ in range(100):
            engine.consume(ANONYMOUS)
        assert engine.consume(AUTHENTICATED) is True
        assert engine.consume(ANONYMOUS) is False

    def test_unknown_class(self, engine) -> None:
        with pytest.raises(ValueError):
            engine.consume("robot")


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

class TestUsageState:
    def test_fresh_state(self, engine) -> None:
        state = engine.usage_state(ANONYMOUS)
        assert state.credits_used == 0
        assert state.credits_remaining == 100
        assert state.total_credits == 100
        assert state.reset_date == "2025-03-14"

    def test_history_records_api_type(self, engine) -> None:
        engine.consume(ANONYMOUS, "name")
        record = engine.usage_state(ANONYMOUS).history[0]
        assert record.api_type == "name"
        assert record.cost == cost_of("name")

    def test_time_until_reset(self, engine) -> None:
        assert engine.time_until_reset() == timedelta(hours=1)

    def test_cost_defaults(self) -> None:
        assert cost_of(None) == 1
        assert cost_of("unlisted") == 1
