"""Prompt construction for the LLM scoring call.

Everything embedded here is bounded: at most PROMPT_MAX_FILES files and
PROMPT_LINES_PER_FILE patch lines each, and capped issue lists.
"""

from __future__ import annotations

from prgrade_core.models import CIReport, DiffFile, PRMetadata, StaticReport

PROMPT_MAX_FILES = 5
PROMPT_LINES_PER_FILE = 50
PROMPT_MAX_ISSUES = 10

SYSTEM_PROMPT = """You are a senior engineer grading a student's pull request for a hiring portfolio.
Be fair, specific and evidence-based. Use the static analysis and CI results as facts;
do not contradict them. Respond with JSON only."""


def summarize_diff(files: list[DiffFile]) -> str:
    parts = []
    for f in files[:PROMPT_MAX_FILES]:
        patch_lines = f.patch.splitlines()
        shown = "\n".join(patch_lines[:PROMPT_LINES_PER_FILE])
        more = len(patch_lines) - PROMPT_LINES_PER_FILE
        suffix = f"\n... ({more} more lines)" if more > 0 else ""
        parts.append(f"### {f.filename} ({f.status}, +{f.additions}/-{f.deletions})\n```diff\n{shown}{suffix}\n```")
    return "\n\n".join(parts) if parts else "(no textual changes)"


def format_static_report(static: StaticReport) -> str:
    lines = [
        f"- Lint: {static.lint_errors} errors, {static.lint_warnings} warnings",
        f"- Dockerfile issues: {static.docker_issue_count}",
        f"- Invalid YAML files: {static.yaml_issue_count}",
        f"- Potential secrets: {static.security_alert_count}",
        f"- PR size: {static.pr_size} lines across {static.file_count} files (git practices score {static.git_score:g}/10)",
    ]
    issues = (static.lint_issues + static.docker_issues + static.yaml_issues)[:PROMPT_MAX_ISSUES]
    for issue in issues:
        lines.append(f"  - [{issue.severity}] {issue.file}:{issue.line} {issue.message}")
    for note in static.git_issues:
        lines.append(f"  - {note}")
    if static.analyzer_errors:
        lines.append(f"- Analyzers unavailable: {', '.join(sorted(static.analyzer_errors))}")
    return "\n".join(lines)


def format_ci_report(ci: CIReport) -> str:
    if ci.status == "no_workflows":
        return "No CI workflows ran for this commit."
    if ci.status in ("unknown", "error"):
        return "CI status unavailable."
    lines = [
        f"- Latest run: {ci.status}",
        f"- Runs: {ci.results.passed} passed, {ci.results.failed} failed, {ci.results.cancelled} cancelled"
        f" of {ci.results.total}",
        f"- Total duration: {int(ci.duration_seconds)}s",
    ]
    if ci.failures:
        lines.append(f"- Failed workflows: {', '.join(ci.failures[:5])}")
    return "\n".join(lines)


def build_scoring_prompt(
    metadata: PRMetadata,
    files: list[DiffFile],
    static: StaticReport,
    ci: CIReport,
) -> str:
    description = (metadata.description or "").strip() or "(no description)"
    return f"""## Pull Request
Repository: {metadata.repo_full_name}
PR #{metadata.number}: {metadata.title}
Author: {metadata.author}
Changes: +{metadata.additions}/-{metadata.deletions} in {metadata.changed_files} files

## Description
{description[:2000]}

## Changed Files (largest first)
{summarize_diff(files)}

## Static Analysis
{format_static_report(static)}

## CI
{format_ci_report(ci)}

### Output Format:
Respond with **only** a JSON object. Every score is a number from 0 to 10:

{{
  "code_quality": <0-10>,
  "problem_solving": <0-10>,
  "bug_risk": <0-10, where 10 means NO bug risk>,
  "devops_execution": <0-10>,
  "optimization": <0-10>,
  "documentation": <0-10>,
  "git_maturity": <0-10>,
  "collaboration": <0-10>,
  "delivery_speed": <0-10>,
  "security": <0-10>,
  "summary": "<two or three sentences>",
  "suggestions": ["<actionable suggestion>", ...]
}}

Do not return any text outside the JSON object."""
