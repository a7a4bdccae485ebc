"""Run the static analyzers over a bounded diff and assemble a StaticReport."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prgrade_core.analyzers.dockerfile import DockerfileAnalyzer
from prgrade_core.analyzers.git_practices import assess_git_practices
from prgrade_core.analyzers.lint import LintAnalyzer
from prgrade_core.analyzers.secrets import SecretScanner
from prgrade_core.analyzers.yaml_syntax import YamlSyntaxAnalyzer
from prgrade_core.models import StaticReport

if TYPE_CHECKING:
    from prgrade_core.analyzers.base import BaseAnalyzer
    from prgrade_core.models import DiffFile, Issue, PRMetadata

logger = logging.getLogger(__name__)

MAX_LINT_ISSUES = 50
MAX_SECURITY_ALERTS = 20


def default_analyzers() -> list[BaseAnalyzer]:
    return [LintAnalyzer(), DockerfileAnalyzer(), YamlSyntaxAnalyzer(), SecretScanner()]


def run_static_analysis(
    files: list[DiffFile],
    metadata: PRMetadata,
    analyzers: list[BaseAnalyzer] | None = None,
) -> StaticReport:
    """Run every analyzer; an analyzer that raises contributes nothing but an error note."""
    report = StaticReport(file_count=metadata.changed_files, pr_size=metadata.size)

    for analyzer in analyzers if analyzers is not None else default_analyzers():
        try:
            issues = analyzer.analyze(files)
        except Exception as e:
            logger.warning("Analyzer %r failed on %s#%d: %s", analyzer.name, metadata.repo_full_name, metadata.number, e)
            report.analyzer_errors[analyzer.name] = str(e)
            continue
        _merge(report, analyzer.name, issues)

    report.git_score, report.git_issues = assess_git_practices(report.pr_size, report.file_count)
    return report


def _merge(report: StaticReport, name: str, issues: list[Issue]) -> None:
    if name == "lint":
        report.lint_errors += sum(1 for i in issues if i.severity == "error")
        report.lint_warnings += sum(1 for i in issues if i.severity != "error")
        report.lint_issues = (report.lint_issues + issues)[:MAX_LINT_ISSUES]
    elif name == "dockerfile":
        report.docker_issues.extend(issues)
        report.docker_issue_count += len(issues)
    elif name == "yaml":
        report.yaml_issues.extend(issues)
        report.yaml_issue_count += len(issues)
    elif name == "secrets":
        report.security_alert_count += len(issues)
        report.security_alerts = (report.security_alerts + issues)[:MAX_SECURITY_ALERTS]
    else:
        report.extra_findings.setdefault(name, []).extend(issues)
