"""Data passed between the review pipeline steps.

Plain dataclasses with no persistence knowledge. The worker layer maps these
onto prgrade_store records.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields

CATEGORIES: tuple[str, ...] = (
    "code_quality",
    "problem_solving",
    "bug_risk",
    "devops_execution",
    "optimization",
    "documentation",
    "git_maturity",
    "collaboration",
    "delivery_speed",
    "security",
)


@dataclass
class PRMetadata:
    repo_full_name: str
    number: int
    title: str = ""
    description: str = ""
    author: str = ""
    author_id: int | None = None
    state: str = "open"
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    head_sha: str = ""
    head_ref: str = ""
    base_ref: str = ""
    html_url: str = ""
    created_at: str | None = None

    @property
    def size(self) -> int:
        return self.additions + self.deletions

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> PRMetadata:
        known = {f.name for f in fields(cls)}
        return cls(**{"repo_full_name": "", "number": 0, **{k: v for k, v in data.items() if k in known}})


@dataclass
class DiffFile:
    """One changed file from the bounded diff.

    ``content`` holds the full head-revision file when it could be fetched
    (``content_complete`` is then True); otherwise it is rebuilt from the
    patch's new-side lines.
    """

    filename: str
    status: str
    additions: int
    deletions: int
    patch: str = ""
    content: str = ""
    content_complete: bool = False
    truncated: bool = False

    @property
    def changes(self) -> int:
        return self.additions + self.deletions


@dataclass
class Issue:
    file: str
    line: int
    severity: str  # "error" | "warning"
    message: str
    rule: str = ""
    unsafe: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Issue:
        return cls(
            file=data.get("file", ""),
            line=int(data.get("line", 0) or 0),
            severity=data.get("severity", "warning"),
            message=data.get("message", ""),
            rule=data.get("rule", ""),
            unsafe=bool(data.get("unsafe", False)),
        )


@dataclass
class StaticReport:
    """Aggregated output of every static analyzer.

    Issue lists may be truncated; the ``*_count`` fields always hold the full
    totals.
    """

    lint_errors: int = 0
    lint_warnings: int = 0
    lint_issues: list[Issue] = field(default_factory=list)
    docker_issues: list[Issue] = field(default_factory=list)
    docker_issue_count: int = 0
    yaml_issues: list[Issue] = field(default_factory=list)
    yaml_issue_count: int = 0
    security_alerts: list[Issue] = field(default_factory=list)
    security_alert_count: int = 0
    file_count: int = 0
    pr_size: int = 0
    git_score: float = 10.0
    git_issues: list[str] = field(default_factory=list)
    extra_findings: dict[str, list[Issue]] = field(default_factory=dict)
    analyzer_errors: dict[str, str] = field(default_factory=dict)

    @property
    def has_unsafe_docker(self) -> bool:
        return any(i.unsafe for i in self.docker_issues)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> StaticReport:
        data = data or {}

        def issues(key: str) -> list[Issue]:
            return [Issue.from_dict(i) for i in data.get(key) or []]

        report = cls(
            lint_errors=int(data.get("lint_errors", 0) or 0),
            lint_warnings=int(data.get("lint_warnings", 0) or 0),
            lint_issues=issues("lint_issues"),
            docker_issues=issues("docker_issues"),
            yaml_issues=issues("yaml_issues"),
            security_alerts=issues("security_alerts"),
            file_count=int(data.get("file_count", 0) or 0),
            pr_size=int(data.get("pr_size", 0) or 0),
            git_score=float(data.get("git_score", 10.0)),
            git_issues=list(data.get("git_issues") or []),
            extra_findings={k: [Issue.from_dict(i) for i in v] for k, v in (data.get("extra_findings") or {}).items()},
            analyzer_errors=dict(data.get("analyzer_errors") or {}),
        )
        # Counts default to the list lengths when the caller only sent issues.
        report.docker_issue_count = int(data.get("docker_issue_count", len(report.docker_issues)) or 0)
        report.yaml_issue_count = int(data.get("yaml_issue_count", len(report.yaml_issues)) or 0)
        report.security_alert_count = int(data.get("security_alert_count", len(report.security_alerts)) or 0)
        return report


@dataclass
class RunResults:
    total: int = 0
    passed: int = 0
    failed: int = 0
    cancelled: int = 0


@dataclass
class CIReport:
    """CI outcome for the PR head commit.

    ``status`` is one of: success, failure, cancelled, running, unknown,
    no_workflows, error.
    """

    status: str = "unknown"
    conclusion: str | None = None
    workflow_count: int = 0
    failures: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    results: RunResults = field(default_factory=RunResults)
    latest_run: dict | None = None

    @property
    def fail_rate(self) -> float:
        if not self.results.total:
            return 0.0
        return self.results.failed / self.results.total

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> CIReport:
        data = data or {}
        results = data.get("results") or {}
        return cls(
            status=data.get("status", "unknown"),
            conclusion=data.get("conclusion"),
            workflow_count=int(data.get("workflow_count", 0) or 0),
            failures=list(data.get("failures") or []),
            duration_seconds=float(data.get("duration_seconds", 0.0) or 0.0),
            results=RunResults(
                total=int(results.get("total", 0) or 0),
                passed=int(results.get("passed", 0) or 0),
                failed=int(results.get("failed", 0) or 0),
                cancelled=int(results.get("cancelled", 0) or 0),
            ),
            latest_run=data.get("latest_run"),
        )


@dataclass
class LLMScores:
    """Validated LLM scoring output: ten 0–10 scores plus narrative."""

    scores: dict[str, float]
    summary: str = ""
    suggestions: list[str] = field(default_factory=list)
    fallback: bool = False
    raw: str = ""

    def to_dict(self) -> dict:
        return {
            **self.scores,
            "summary": self.summary,
            "suggestions": list(self.suggestions),
            "fallback": self.fallback,
        }


@dataclass
class AppliedRule:
    rule: str
    category: str
    action: str
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LegacyScore:
    """Five-field compatibility view of a ten-category score."""

    code_quality: float
    devops_execution: float
    reliability: float
    delivery_speed: float
    collaboration: float
    total: float
    badge: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FusedScore:
    breakdown: dict[str, float]
    deterministic: dict[str, float]
    total: float
    badge: str
    rules_applied: list[AppliedRule] = field(default_factory=list)
    evidence: list[str] = field(default_factory=list)
    summary: str = ""
    suggestions: list[str] = field(default_factory=list)
    fallback: bool = False
    legacy: LegacyScore | None = None

    @property
    def reliability(self) -> float:
        return round(10 - self.breakdown["bug_risk"], 1)

    def details(self) -> dict:
        """The ``details_json`` blob stored alongside the score row."""
        return {
            "breakdown": dict(self.breakdown),
            "deterministic": dict(self.deterministic),
            "summary": self.summary,
            "suggestions": list(self.suggestions),
            "evidence": list(self.evidence),
            "rules_applied": [r.to_dict() for r in self.rules_applied],
            "fallback": self.fallback,
            "legacy": self.legacy.to_dict() if self.legacy else None,
        }
