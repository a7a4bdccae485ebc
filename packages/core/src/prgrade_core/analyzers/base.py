"""Pluggable static analyzer interface.

Each analyzer receives the bounded set of changed files and returns a flat
list of issues. The runner decides which report fields an analyzer's output
lands in, using the analyzer's ``name``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prgrade_core.models import DiffFile, Issue


class BaseAnalyzer(ABC):
    name: str = ""

    def applies_to(self, file: DiffFile) -> bool:
        """Return True when this analyzer should inspect ``file``. Defaults to every file."""
        return True

    def analyze(self, files: list[DiffFile]) -> list[Issue]:
        issues: list[Issue] = []
        for f in files:
            if f.status == "removed" or not self.applies_to(f):
                continue
            issues.extend(self.analyze_file(f))
        return issues

    @abstractmethod
    def analyze_file(self, file: DiffFile) -> list[Issue]:
        """Inspect one file and return the issues found in it."""
