"""score command: fuse a saved LLM answer with static and CI reports."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

from prgrade_core.models import CATEGORIES, CIReport, PRMetadata, StaticReport
from prgrade_core.providers.base import LLMResponseError, scores_from_dict
from prgrade_core.scoring.fusion import generate_score

console = Console()

_BADGE_STYLE = {"GREEN": "green", "YELLOW": "yellow", "RED": "red"}


def _load_json(path: str | None) -> dict | None:
    if path is None:
        return None
    with open(path) as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"{path} is not valid JSON: {e}") from e


@click.command("score")
@click.option("--llm", "llm_path", required=True, type=click.Path(exists=True), help="LLM score object (JSON).")
@click.option("--static", "static_path", type=click.Path(exists=True), default=None, help="Static report (JSON).")
@click.option("--ci", "ci_path", type=click.Path(exists=True), default=None, help="CI report (JSON).")
@click.option("--metadata", "metadata_path", type=click.Path(exists=True), default=None, help="PR metadata (JSON).")
@click.option("--json", "as_json", is_flag=True, help="Print the fused score as JSON.")
def score_cmd(llm_path, static_path, ci_path, metadata_path, as_json: bool):
    """Compute the fused ten-category score without touching GitHub or the database."""
    try:
        llm = scores_from_dict(_load_json(llm_path))
    except LLMResponseError as e:
        raise click.ClickException(f"Invalid LLM output: {e}") from e

    ci = _load_json(ci_path)
    metadata = _load_json(metadata_path)
    fused = generate_score(
        llm,
        StaticReport.from_dict(_load_json(static_path)),
        CIReport.from_dict(ci) if ci else None,
        PRMetadata.from_dict(metadata) if metadata else None,
    )

    if as_json:
        click.echo(json.dumps({"total_score": fused.total, "badge": fused.badge, **fused.details()}, indent=2))
        return

    table = Table(title="Fused Score", show_header=True, header_style="bold cyan")
    table.add_column("Category", style="bold")
    table.add_column("LLM", justify="right")
    table.add_column("Deterministic", justify="right")
    table.add_column("Final", justify="right")
    for category in CATEGORIES:
        table.add_row(
            category,
            f"{llm.scores[category]:g}",
            f"{fused.deterministic[category]:g}",
            f"{fused.breakdown[category]:g}",
        )
    console.print(table)

    for rule in fused.rules_applied:
        console.print(f"[yellow]{rule.rule}[/yellow] {rule.category}: {rule.action} ({rule.reason})")
    style = _BADGE_STYLE.get(fused.badge, "white")
    console.print(f"Total: [bold]{fused.total:g}[/bold]/100  [{style}]{fused.badge}[/{style}]")
