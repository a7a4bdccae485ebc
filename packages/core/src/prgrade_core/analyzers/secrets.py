from __future__ import annotations

import re

from prgrade_core.analyzers.base import BaseAnalyzer
from prgrade_core.models import DiffFile, Issue
from prgrade_core.utils.code import is_code_file

SECRET_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("password", re.compile(r"password\s*[:=]\s*[\"']?[^\"'\s]{8,}", re.IGNORECASE)),
    ("api-key", re.compile(r"api[_-]?key\s*[:=]\s*[\"']?[^\"'\s]{10,}", re.IGNORECASE)),
    ("secret", re.compile(r"secret\s*[:=]\s*[\"']?[^\"'\s]{10,}", re.IGNORECASE)),
    ("token", re.compile(r"token\s*[:=]\s*[\"']?[^\"'\s]{10,}", re.IGNORECASE)),
    ("private-key", re.compile(r"BEGIN\s+(RSA\s+|EC\s+|OPENSSH\s+)?PRIVATE\s+KEY", re.IGNORECASE)),
    ("aws-access-key", re.compile(r"aws[_-]?access[_-]?key", re.IGNORECASE)),
    ("aws-secret-key", re.compile(r"aws[_-]?secret[_-]?access[_-]?key", re.IGNORECASE)),
    ("aws-key-id", re.compile(r"\bAKIA[0-9A-Z]{16}\b")),
]


class SecretScanner(BaseAnalyzer):
    """Regex scan for hard-coded credentials.

    Comment lines (``#`` or ``//``) and lines mentioning "example" are skipped.
    A line matching several patterns yields one alert per pattern.
    """

    name = "secrets"

    def applies_to(self, file: DiffFile) -> bool:
        return is_code_file(file.filename)

    def analyze_file(self, file: DiffFile) -> list[Issue]:
        alerts: list[Issue] = []
        for lineno, line in enumerate(file.content.splitlines(), start=1):
            stripped = line.strip()
            if stripped.startswith(("#", "//")) or "example" in stripped.lower():
                continue
            for rule, pattern in SECRET_PATTERNS:
                if pattern.search(line):
                    alerts.append(
                        Issue(file.filename, lineno, "error", f"Possible {rule.replace('-', ' ')} exposed", rule=rule)
                    )
        return alerts
