from __future__ import annotations

import re

from prgrade_core.analyzers.base import BaseAnalyzer
from prgrade_core.models import DiffFile, Issue
from prgrade_core.utils.code import is_dockerfile

ROOT_USER_MESSAGE = "Avoid running as root user"
APT_CACHE_MESSAGE = "Optimize image size: clean up the apt cache after installing packages"
SECRET_MESSAGE = "Potential secret exposure in Dockerfile"

_USER_ROOT_RE = re.compile(r"^\s*USER\s+(root|0)(\s|:|$)", re.IGNORECASE)
_SUDO_RE = re.compile(r"^\s*RUN\b.*\bsudo\b", re.IGNORECASE)
_APT_INSTALL_RE = re.compile(r"\bapt-get\s+(-\S+\s+)*install\b", re.IGNORECASE)
_APT_CLEAN_RE = re.compile(r"rm\s+-rf\s+/var/lib/apt/lists|apt-get\s+clean", re.IGNORECASE)
_INLINE_SECRET_RE = re.compile(
    r"^\s*(ENV|ARG)\s+\S*(PASSWORD|SECRET|API_KEY|TOKEN|PRIVATE_KEY)\S*\s*[= ]\s*\S+",
    re.IGNORECASE,
)


def _logical_lines(content: str) -> list[tuple[int, str]]:
    """Join backslash-continued lines, keeping the number of the first physical line."""
    joined: list[tuple[int, str]] = []
    buffer: list[str] = []
    start = 0
    for lineno, line in enumerate(content.splitlines(), start=1):
        if not buffer:
            start = lineno
        stripped = line.rstrip()
        if stripped.endswith("\\"):
            buffer.append(stripped[:-1])
            continue
        buffer.append(stripped)
        joined.append((start, " ".join(buffer)))
        buffer = []
    if buffer:
        joined.append((start, " ".join(buffer)))
    return joined


class DockerfileAnalyzer(BaseAnalyzer):
    """Heuristic checks for container build files.

    Root-user and inline-secret findings are flagged ``unsafe``; the scoring
    engine caps DevOps execution when any unsafe finding is present.
    """

    name = "dockerfile"

    def applies_to(self, file: DiffFile) -> bool:
        return is_dockerfile(file.filename)

    def analyze_file(self, file: DiffFile) -> list[Issue]:
        issues: list[Issue] = []
        for lineno, line in _logical_lines(file.content):
            if line.lstrip().startswith("#"):
                continue
            if _USER_ROOT_RE.search(line) or _SUDO_RE.search(line):
                issues.append(
                    Issue(file.filename, lineno, "warning", ROOT_USER_MESSAGE, rule="root-user", unsafe=True)
                )
            if _APT_INSTALL_RE.search(line) and not _APT_CLEAN_RE.search(line):
                issues.append(Issue(file.filename, lineno, "warning", APT_CACHE_MESSAGE, rule="apt-cache"))
            if _INLINE_SECRET_RE.search(line):
                issues.append(Issue(file.filename, lineno, "error", SECRET_MESSAGE, rule="inline-secret", unsafe=True))
        return issues
