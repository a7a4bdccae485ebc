"""Tests for cascading PR discovery."""

from datetime import datetime, timezone

from prgrade_core.discovery import (
    AUTOMATIC_BUDGET,
    MANUAL_BUDGET,
    DiscoveryBudget,
    DiscoveryState,
    PhaseBudget,
    PRDiscovery,
)


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class Listing:
    """Returns the queued results in order, repeating the last one."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def _discovery(listing, budget=AUTOMATIC_BUDGET):
    clock = FakeClock()
    return PRDiscovery(listing, budget, sleep=clock.sleep, clock=clock), clock


def _at(hour):
    return datetime(2026, 1, 1, hour, tzinfo=timezone.utc)


class TestPRDiscovery:
    def test_found_on_first_poll(self):
        discovery, clock = _discovery(Listing([(12, _at(1))]))
        result = discovery.run("alice/app")
        assert result.state is DiscoveryState.FOUND
        assert result.pr_number == 12
        assert result.attempts == 1
        assert clock.sleeps == []

    def test_found_during_primary_phase(self):
        discovery, clock = _discovery(Listing([], [], [(12, _at(1))]))
        result = discovery.run("alice/app")
        assert result.found
        assert result.attempts == 3
        assert clock.sleeps == [5.0, 5.0]

    def test_most_recent_pr_wins(self):
        discovery, _ = _discovery(Listing([(4, _at(1)), (9, _at(3)), (7, _at(2))]))
        assert discovery.run("alice/app").pr_number == 9

    def test_found_during_diagnostic_phase(self):
        discovery, clock = _discovery(Listing([], [], [], [], [(21, _at(1))]), budget=MANUAL_BUDGET)
        result = discovery.run("alice/app")
        assert result.state is DiscoveryState.FOUND
        assert result.attempts == 5
        # Primary polls every 2s, diagnostic every 1s.
        assert clock.sleeps == [2.0, 2.0, 1.0]

    def test_exhausted_within_budget(self):
        listing = Listing([])
        discovery, _ = _discovery(listing)
        result = discovery.run("alice/app")
        assert result.state is DiscoveryState.EXHAUSTED
        assert result.pr_number is None
        assert result.attempts == 26
        assert listing.calls == 26
        assert result.elapsed <= AUTOMATIC_BUDGET.max_elapsed
        assert discovery.state is DiscoveryState.EXHAUSTED

    def test_manual_budget_is_short(self):
        discovery, _ = _discovery(Listing([]), budget=MANUAL_BUDGET)
        result = discovery.run("alice/app")
        assert result.attempts == 11
        assert result.elapsed <= MANUAL_BUDGET.max_elapsed

    def test_phase_timeout_bounds_attempts(self):
        phase = PhaseBudget(interval=10.0, max_attempts=100, timeout=25.0)
        budget = DiscoveryBudget(primary=phase, diagnostic=PhaseBudget(interval=1.0, max_attempts=1, timeout=1.0))
        discovery, clock = _discovery(Listing([]), budget=budget)
        result = discovery.run("alice/app")
        assert clock.sleeps == [10.0, 10.0, 5.0]
        assert result.attempts == 5

    def test_listing_errors_count_as_empty_polls(self):
        discovery, _ = _discovery(Listing(RuntimeError("502"), [(3, None)]))
        result = discovery.run("alice/app")
        assert result.found
        assert result.attempts == 2

    def test_budget_from_config(self):
        budget = DiscoveryBudget.from_config(
            {
                "primary": {"interval": 1, "max_attempts": 2, "timeout": 3},
                "diagnostic": {"interval": 4, "max_attempts": 5, "timeout": 6},
            }
        )
        assert budget.primary.max_attempts == 2
        assert budget.max_elapsed == 9
