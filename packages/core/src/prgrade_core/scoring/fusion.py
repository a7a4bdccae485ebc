"""Blend LLM and deterministic category scores into the final ten-category score.

    fuse()                  → weighted per-category blend
    apply_override_rules()  → hard caps from objective signals, then clamp
    total / badge           → sum of categories and its tier

Override rules run after fusion; the value they set is final.
"""

from __future__ import annotations

from prgrade_core.models import (
    CATEGORIES,
    AppliedRule,
    CIReport,
    FusedScore,
    LegacyScore,
    LLMScores,
    PRMetadata,
    StaticReport,
)
from prgrade_core.scoring.deterministic import clamp, deterministic_scores

LLM_WEIGHT = 0.7
DETERMINISTIC_WEIGHT = 0.3

LINT_ERROR_CAP_THRESHOLD = 50
LEGACY_LINT_ERROR_CAP_THRESHOLD = 20
OVERSIZED_PR_LINES = 1000
OVERSIZED_PR_PENALTY = 2.0
POOR_GIT_SCORE = 6.0

GREEN_THRESHOLD = 75
YELLOW_THRESHOLD = 50


def fuse(llm: dict[str, float], deterministic: dict[str, float]) -> dict[str, float]:
    return {
        category: round(LLM_WEIGHT * float(llm[category]) + DETERMINISTIC_WEIGHT * float(deterministic[category]), 1)
        for category in CATEGORIES
    }


def _cap(scores: dict, rules: list[AppliedRule], rule: str, category: str, ceiling: float, reason: str) -> None:
    if scores[category] > ceiling:
        scores[category] = ceiling
        rules.append(AppliedRule(rule=rule, category=category, action=f"capped at {ceiling:g}", reason=reason))


def apply_override_rules(
    scores: dict[str, float],
    static: StaticReport | None,
    ci: CIReport | None,
) -> tuple[dict[str, float], list[AppliedRule]]:
    """Apply the sanity rules in their fixed order, then clamp every category to 0–10.

    Each rule is evaluated independently against the current scores. Returns
    a new score dict and the list of rules that changed something.
    """
    scores = dict(scores)
    rules: list[AppliedRule] = []

    if static is not None and static.security_alert_count > 0:
        if scores["security"] != 0:
            scores["security"] = 0.0
            rules.append(
                AppliedRule(
                    rule="SECRET_FOUND",
                    category="security",
                    action="set to 0",
                    reason=f"{static.security_alert_count} potential secret(s) detected",
                )
            )

    if ci is not None and ci.status == "failure":
        _cap(scores, rules, "CI_FAILURE", "bug_risk", 3.0, "CI run failed")
        _cap(scores, rules, "CI_FAILURE", "delivery_speed", 4.0, "CI run failed")

    if static is not None and static.lint_errors > LINT_ERROR_CAP_THRESHOLD:
        _cap(scores, rules, "LINT_ERRORS_HIGH", "code_quality", 4.0, f"{static.lint_errors} lint errors")

    if static is not None and static.has_unsafe_docker:
        _cap(scores, rules, "UNSAFE_CONTAINER", "devops_execution", 5.0, "Unsafe Dockerfile practices detected")

    if static is not None and static.pr_size > OVERSIZED_PR_LINES:
        scores["delivery_speed"] = scores["delivery_speed"] - OVERSIZED_PR_PENALTY
        rules.append(
            AppliedRule(
                rule="OVERSIZED_PR",
                category="delivery_speed",
                action=f"reduced by {OVERSIZED_PR_PENALTY:g}",
                reason=f"PR changes {static.pr_size} lines",
            )
        )

    if static is not None and static.git_score < POOR_GIT_SCORE:
        _cap(
            scores,
            rules,
            "POOR_GIT_HYGIENE",
            "git_maturity",
            static.git_score,
            f"Git practices score is {static.git_score:g}",
        )

    if static is not None and static.yaml_issue_count > 0:
        _cap(scores, rules, "YAML_INVALID", "devops_execution", 6.0, f"{static.yaml_issue_count} invalid YAML file(s)")

    return {category: clamp(scores[category]) for category in CATEGORIES}, rules


def total_score(scores: dict[str, float]) -> float:
    return round(sum(scores[c] for c in CATEGORIES), 1)


def badge_for(total: float) -> str:
    if total >= GREEN_THRESHOLD:
        return "GREEN"
    if total >= YELLOW_THRESHOLD:
        return "YELLOW"
    return "RED"


def legacy_projection(scores: dict[str, float], static: StaticReport | None) -> LegacyScore:
    """Project the ten categories onto the five-field legacy model (total 0–100)."""
    code_quality = scores["code_quality"]
    if static is not None and static.lint_errors > LEGACY_LINT_ERROR_CAP_THRESHOLD:
        code_quality = min(code_quality, 5.0)
    fields = {
        "code_quality": code_quality,
        "devops_execution": scores["devops_execution"],
        "reliability": clamp(10 - scores["bug_risk"]),
        "delivery_speed": scores["delivery_speed"],
        "collaboration": clamp((scores["collaboration"] + scores["git_maturity"]) / 2),
    }
    total = round(sum(fields.values()) * 2, 1)
    return LegacyScore(**fields, total=total, badge=badge_for(total))


def build_evidence(
    static: StaticReport | None,
    ci: CIReport | None,
    metadata: PRMetadata | None,
    rules: list[AppliedRule],
) -> list[str]:
    evidence: list[str] = []

    if ci is not None:
        evidence.append(f"CI status: {ci.status}")
        if ci.results.total:
            evidence.append(f"Workflow runs: {ci.results.passed}/{ci.results.total} passed")
        for failure in ci.failures[:3]:
            evidence.append(f"Failed workflow: {failure}")

    if static is not None:
        evidence.append(f"Lint: {static.lint_errors} errors, {static.lint_warnings} warnings")
        if static.docker_issue_count:
            evidence.append(f"Dockerfile: {static.docker_issue_count} issue(s)")
        if static.yaml_issue_count:
            evidence.append(f"YAML: {static.yaml_issue_count} invalid file(s)")
        if static.security_alert_count:
            evidence.append(f"Security: {static.security_alert_count} potential secret(s) detected")
        else:
            evidence.append("Security: no secrets detected")
        evidence.append(f"PR size: {static.pr_size} lines changed")
        evidence.append(f"Files changed: {static.file_count}")

    if metadata is not None:
        if (metadata.description or "").strip():
            evidence.append("PR description provided")
        else:
            evidence.append("No PR description")

    for rule in rules:
        evidence.append(f"Rule {rule.rule}: {rule.category} {rule.action} ({rule.reason})")

    return evidence


def generate_score(
    llm: LLMScores,
    static: StaticReport | None,
    ci: CIReport | None = None,
    metadata: PRMetadata | None = None,
) -> FusedScore:
    """Full fusion pass: deterministic scores, blend, override rules, total, badge, evidence."""
    deterministic = deterministic_scores(static, ci, metadata)
    blended = fuse(llm.scores, deterministic)
    final, rules = apply_override_rules(blended, static, ci)
    total = total_score(final)
    return FusedScore(
        breakdown=final,
        deterministic=deterministic,
        total=total,
        badge=badge_for(total),
        rules_applied=rules,
        evidence=build_evidence(static, ci, metadata, rules),
        summary=llm.summary,
        suggestions=list(llm.suggestions),
        fallback=llm.fallback,
        legacy=legacy_projection(final, static),
    )
