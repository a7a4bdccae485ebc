"""Cascading PR discovery.

A freshly pushed branch can take a while to show up as an open pull request.
Discovery polls the open-PR list in two phases:

    NOT_SEARCHED → PRIMARY ──found──────────────→ FOUND
                      │ exhausted
                      ▼
                  DIAGNOSTIC ──found──→ FOUND
                      │ exhausted
                      ▼
                  EXHAUSTED   ("not found yet", not an error)

Each phase is bounded by an attempt count and a wall-clock timeout; the
diagnostic phase polls more often and for longer.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

logger = logging.getLogger(__name__)


class DiscoveryState(str, enum.Enum):
    NOT_SEARCHED = "NOT_SEARCHED"
    PRIMARY = "PRIMARY"
    DIAGNOSTIC = "DIAGNOSTIC"
    FOUND = "FOUND"
    EXHAUSTED = "EXHAUSTED"


@dataclass(frozen=True)
class PhaseBudget:
    interval: float
    max_attempts: int
    timeout: float


@dataclass(frozen=True)
class DiscoveryBudget:
    primary: PhaseBudget
    diagnostic: PhaseBudget

    @property
    def max_elapsed(self) -> float:
        return self.primary.timeout + self.diagnostic.timeout

    @classmethod
    def from_config(cls, settings: dict) -> DiscoveryBudget:
        return cls(primary=PhaseBudget(**settings["primary"]), diagnostic=PhaseBudget(**settings["diagnostic"]))


AUTOMATIC_BUDGET = DiscoveryBudget(
    primary=PhaseBudget(interval=5.0, max_attempts=6, timeout=30.0),
    diagnostic=PhaseBudget(interval=3.0, max_attempts=20, timeout=60.0),
)
MANUAL_BUDGET = DiscoveryBudget(
    primary=PhaseBudget(interval=2.0, max_attempts=3, timeout=6.0),
    diagnostic=PhaseBudget(interval=1.0, max_attempts=8, timeout=10.0),
)


@dataclass
class DiscoveryResult:
    state: DiscoveryState
    pr_number: int | None = None
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def found(self) -> bool:
        return self.state is DiscoveryState.FOUND


ListOpenPulls = Callable[[], "list[tuple[int, datetime | None]]"]


class PRDiscovery:
    """Poll ``list_open_pulls`` until a PR appears or both phases are exhausted.

    ``list_open_pulls`` returns ``(number, created_at)`` pairs. ``sleep`` and
    ``clock`` are injectable for tests.
    """

    def __init__(
        self,
        list_open_pulls: ListOpenPulls,
        budget: DiscoveryBudget = AUTOMATIC_BUDGET,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._list_open_pulls = list_open_pulls
        self.budget = budget
        self._sleep = sleep
        self._clock = clock
        self.state = DiscoveryState.NOT_SEARCHED

    def run(self, repo_full_name: str) -> DiscoveryResult:
        start = self._clock()
        attempts = 0

        for state, phase in (
            (DiscoveryState.PRIMARY, self.budget.primary),
            (DiscoveryState.DIAGNOSTIC, self.budget.diagnostic),
        ):
            self._transition(state, repo_full_name, attempts, self._clock() - start)
            pr_number, used = self._poll_phase(phase)
            attempts += used
            if pr_number is not None:
                elapsed = self._clock() - start
                self._transition(DiscoveryState.FOUND, repo_full_name, attempts, elapsed, pr_number)
                return DiscoveryResult(DiscoveryState.FOUND, pr_number, attempts, elapsed)

        elapsed = self._clock() - start
        self._transition(DiscoveryState.EXHAUSTED, repo_full_name, attempts, elapsed)
        return DiscoveryResult(DiscoveryState.EXHAUSTED, None, attempts, elapsed)

    def _poll_phase(self, phase: PhaseBudget) -> tuple[int | None, int]:
        phase_start = self._clock()
        attempts = 0
        while attempts < phase.max_attempts:
            attempts += 1
            pr_number = self._latest_open_pr()
            if pr_number is not None:
                return pr_number, attempts
            if attempts >= phase.max_attempts:
                break
            remaining = phase.timeout - (self._clock() - phase_start)
            if remaining <= 0:
                break
            self._sleep(min(phase.interval, remaining))
        return None, attempts

    def _latest_open_pr(self) -> int | None:
        try:
            pulls = self._list_open_pulls()
        except Exception as e:
            logger.warning("Listing open pull requests failed: %s", e)
            return None
        if not pulls:
            return None
        # Most recently created PR wins; missing timestamps sort last.
        pulls = sorted(pulls, key=lambda p: (p[1] is not None, p[1] or datetime.min), reverse=True)
        return pulls[0][0]

    def _transition(
        self,
        state: DiscoveryState,
        repo_full_name: str,
        attempts: int,
        elapsed: float,
        pr_number: int | None = None,
    ) -> None:
        self.state = state
        if pr_number is not None:
            logger.info(
                "PR discovery %s for %s: PR #%d after %d attempts (%.1fs)",
                state.value,
                repo_full_name,
                pr_number,
                attempts,
                elapsed,
            )
        else:
            logger.info(
                "PR discovery %s for %s after %d attempts (%.1fs)", state.value, repo_full_name, attempts, elapsed
            )
