from __future__ import annotations


def assess_git_practices(pr_size: int, file_count: int) -> tuple[float, list[str]]:
    """Score PR hygiene from its size (additions + deletions) and changed-file count.

    Returns a (score, issues) pair; the score starts at 10 and is clamped to 0–10.
    """
    score = 10.0
    issues: list[str] = []

    if pr_size > 1000:
        score -= 3
        issues.append("PR is very large (>1000 lines). Consider splitting it into smaller PRs.")
    elif pr_size > 500:
        score -= 2
        issues.append("PR is large (>500 lines). Smaller PRs are easier to review.")
    elif pr_size > 200:
        score -= 1

    if file_count > 20:
        score -= 2
        issues.append(f"PR touches {file_count} files. Keep changes focused.")
    elif file_count > 10:
        score -= 1

    return max(0.0, min(10.0, score)), issues
