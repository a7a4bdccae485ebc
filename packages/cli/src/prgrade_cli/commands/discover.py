"""discover command: poll a repository for its newest open PR."""

from __future__ import annotations

import click
from rich.console import Console

from prgrade_core.discovery import AUTOMATIC_BUDGET, MANUAL_BUDGET, DiscoveryBudget, PRDiscovery
from prgrade_core.errors import PrgradeError
from prgrade_core.gh.auth import github_client
from prgrade_core.gh.pull_request import get_repo, list_open_pulls

console = Console()


@click.command("discover")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--installation", "installation_id", default=None, help="GitHub App installation id.")
@click.option("--manual", is_flag=True, help="Use the short budgets of a user-triggered fetch.")
@click.pass_context
def discover_cmd(ctx, repo: str, installation_id: str | None, manual: bool):
    """Run cascading PR discovery and print what it found."""
    config = ctx.obj["config"]
    settings = config.get("discovery", {}).get("manual" if manual else "automatic")
    if settings:
        budget = DiscoveryBudget.from_config(settings)
    else:
        budget = MANUAL_BUDGET if manual else AUTOMATIC_BUDGET

    try:
        repository = get_repo(github_client(config, installation_id), repo)
    except PrgradeError as e:
        raise click.ClickException(str(e)) from e

    with console.status(f"Searching {repo} for an open pull request..."):
        result = PRDiscovery(lambda: list_open_pulls(repository), budget).run(repo)

    if not result.found:
        console.print(
            f"[yellow]No open pull request found[/yellow] after {result.attempts} attempts ({result.elapsed:.1f}s)."
        )
        ctx.exit(1)
    console.print(f"[green]Found PR #{result.pr_number}[/green] after {result.attempts} attempts ({result.elapsed:.1f}s).")
