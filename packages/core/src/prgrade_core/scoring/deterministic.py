"""Deterministic 0–10 sub-scores computed from static, CI and PR signals only.

Every function returns a neutral 5 when the signal it depends on is missing.
"""

from __future__ import annotations

from prgrade_core.models import CIReport, PRMetadata, StaticReport

NEUTRAL = 5.0


def clamp(value: float, low: float = 0.0, high: float = 10.0) -> float:
    return round(max(low, min(high, value)), 1)


def code_quality(static: StaticReport | None) -> float:
    if static is None:
        return NEUTRAL
    score = 10 - 0.5 * static.lint_errors - 0.1 * static.lint_warnings
    if static.lint_errors > 50:
        score -= 3
    elif static.lint_errors > 20:
        score -= 2
    return clamp(score)


def bug_risk(static: StaticReport | None, ci: CIReport | None) -> float:
    """Inverse risk: 10 means no observed bug risk."""
    if static is None and ci is None:
        return NEUTRAL
    risk = 0.0
    if ci is not None:
        if ci.status == "failure":
            risk += 7
        elif ci.status == "cancelled":
            risk += 4
        risk += ci.fail_rate * 5
    if static is not None:
        risk += min(3.0, 0.1 * static.lint_errors)
    return clamp(10 - risk)


def devops_execution(static: StaticReport | None, ci: CIReport | None) -> float:
    score = 10.0
    if static is not None:
        if static.docker_issue_count >= 3:
            score -= 4
        else:
            score -= 1.5 * static.docker_issue_count
        score -= 2 * static.yaml_issue_count
    if ci is None or ci.status in ("unknown", "error"):
        score -= 2
    elif ci.status == "success":
        score += 1
    elif ci.status == "no_workflows":
        score -= 3
    return clamp(score)


def security(static: StaticReport | None) -> float:
    if static is None:
        return NEUTRAL
    return 0.0 if static.security_alert_count > 0 else 10.0


def delivery_speed(metadata: PRMetadata | None) -> float:
    if metadata is None:
        return NEUTRAL
    score = 10.0
    if metadata.size > 2000:
        score -= 4
    elif metadata.size > 1000:
        score -= 2
    elif metadata.size > 500:
        score -= 1
    if metadata.changed_files > 20:
        score -= 2
    elif metadata.changed_files > 10:
        score -= 1
    return clamp(score)


def documentation(metadata: PRMetadata | None) -> float:
    if metadata is None:
        return NEUTRAL
    length = len((metadata.description or "").strip())
    if length == 0:
        return 2.0
    if length < 50:
        return 4.0
    if length >= 200:
        return 8.0
    return 6.0


def git_maturity(metadata: PRMetadata | None) -> float:
    if metadata is None:
        return NEUTRAL
    score = 10.0
    if metadata.size > 2000:
        score -= 5
    elif metadata.size > 1000:
        score -= 3
    elif metadata.size > 500:
        score -= 1
    if metadata.changed_files > 20:
        score -= 2
    elif metadata.changed_files > 10:
        score -= 1
    return clamp(score)


def optimization(static: StaticReport | None, metadata: PRMetadata | None) -> float:
    score = 7.0
    if static is not None:
        score -= 1.5 * sum(1 for i in static.docker_issues if "optimize" in i.message.lower())
    if metadata is not None and metadata.size > 1500:
        score -= 1
    return clamp(score)


def problem_solving(static: StaticReport | None, ci: CIReport | None) -> float:
    score = 7.0
    if ci is not None:
        if ci.status == "success":
            score += 2
        elif ci.status == "failure":
            score -= 2
    if static is not None:
        if static.lint_errors == 0:
            score += 1
        elif static.lint_errors > 20:
            score -= 1
    return clamp(score)


def collaboration(metadata: PRMetadata | None) -> float:
    if metadata is None:
        return NEUTRAL
    score = 5.0
    length = len((metadata.description or "").strip())
    if length >= 100:
        score += 2
    elif length == 0:
        score -= 2
    if metadata.size > 2000:
        score -= 3
    elif metadata.size > 1000:
        score -= 1
    return clamp(score)


def deterministic_scores(
    static: StaticReport | None,
    ci: CIReport | None,
    metadata: PRMetadata | None,
) -> dict[str, float]:
    return {
        "code_quality": code_quality(static),
        "problem_solving": problem_solving(static, ci),
        "bug_risk": bug_risk(static, ci),
        "devops_execution": devops_execution(static, ci),
        "optimization": optimization(static, metadata),
        "documentation": documentation(metadata),
        "git_maturity": git_maturity(metadata),
        "collaboration": collaboration(metadata),
        "delivery_speed": delivery_speed(metadata),
        "security": security(static),
    }
