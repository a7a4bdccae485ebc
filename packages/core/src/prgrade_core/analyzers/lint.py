from __future__ import annotations

import ast
import re

from prgrade_core.analyzers.base import BaseAnalyzer
from prgrade_core.models import DiffFile, Issue
from prgrade_core.utils.code import JS_EXTENSIONS, PY_EXTENSIONS, extension, is_lintable

MAX_LINE_LENGTH = 120

# (rule, severity, pattern, message)
_JS_RULES = [
    ("no-debugger", "error", re.compile(r"\bdebugger\b"), "Unexpected 'debugger' statement"),
    ("no-eval", "error", re.compile(r"\beval\s*\("), "eval() can be harmful"),
    ("no-empty", "error", re.compile(r"catch\s*(\([^)]*\))?\s*\{\s*\}"), "Empty catch block"),
    ("no-var", "warning", re.compile(r"^\s*var\s+"), "Unexpected var, use let or const instead"),
    ("eqeqeq", "warning", re.compile(r"(?<![=!<>])[=!]=(?!=)"), "Expected '===' and '!==' instead of '==' and '!='"),
    ("no-console", "warning", re.compile(r"\bconsole\.log\s*\("), "Unexpected console.log statement"),
    ("no-alert", "warning", re.compile(r"\balert\s*\("), "Unexpected alert"),
]

_PY_RULES = [
    ("no-eval", "error", re.compile(r"\b(eval|exec)\s*\("), "eval()/exec() can be harmful"),
    ("no-debugger", "error", re.compile(r"\bpdb\.set_trace\s*\(|\bbreakpoint\s*\(\s*\)"), "Leftover debugger call"),
    ("bare-except", "warning", re.compile(r"^\s*except\s*:"), "Bare 'except:' catches SystemExit and KeyboardInterrupt"),
    ("wildcard-import", "warning", re.compile(r"^\s*from\s+\S+\s+import\s+\*"), "Wildcard import"),
]


class LintAnalyzer(BaseAnalyzer):
    """Rule-based lint pass for JavaScript/TypeScript and Python sources."""

    name = "lint"

    def applies_to(self, file: DiffFile) -> bool:
        return is_lintable(file.filename)

    def analyze_file(self, file: DiffFile) -> list[Issue]:
        ext = extension(file.filename)
        if ext in JS_EXTENSIONS:
            rules, comment_prefixes = _JS_RULES, ("//", "/*", "*")
        elif ext in PY_EXTENSIONS:
            rules, comment_prefixes = _PY_RULES, ("#",)
        else:
            return []

        issues: list[Issue] = []
        if ext in PY_EXTENSIONS and file.content_complete:
            syntax = _python_syntax_error(file)
            if syntax:
                issues.append(syntax)

        for lineno, line in enumerate(file.content.splitlines(), start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith(comment_prefixes):
                continue
            for rule, severity, pattern, message in rules:
                if pattern.search(line):
                    issues.append(Issue(file=file.filename, line=lineno, severity=severity, message=message, rule=rule))
            if len(line) > MAX_LINE_LENGTH:
                issues.append(
                    Issue(
                        file=file.filename,
                        line=lineno,
                        severity="warning",
                        message=f"Line exceeds {MAX_LINE_LENGTH} characters",
                        rule="max-len",
                    )
                )
        return issues


def _python_syntax_error(file: DiffFile) -> Issue | None:
    try:
        ast.parse(file.content, filename=file.filename)
    except SyntaxError as e:
        return Issue(
            file=file.filename,
            line=e.lineno or 0,
            severity="error",
            message=f"Syntax error: {e.msg}",
            rule="syntax",
        )
    return None
