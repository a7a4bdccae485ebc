"""CLI entry point for prgrade.

Commands:
  serve           run the HTTP API (optionally with the stage workers in-process)
  work            run stage workers against the shared queue
  queues          show per-stage job counts
  prune           drop old completed and failed jobs
  dead-letters    inspect the dead-letter store
  discover        run cascading PR discovery for a repository
  score           compute a fused score from JSON inputs, offline
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prgrade_cli.commands.discover import discover_cmd
from prgrade_cli.commands.queues import dead_letters_cmd, prune_cmd, queues_cmd
from prgrade_cli.commands.score import score_cmd
from prgrade_cli.commands.serve import serve_cmd, work_cmd

console = Console()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)],
        force=True,
    )


def _build_runtime(config: dict):
    """Wire the store, queue and workers for the configured database.

    Imported lazily so ``prgrade score`` loads without the worker and
    store packages.
    """
    from prgrade_worker.runtime import build_runtime

    return build_runtime(config)


@click.group()
@click.version_option(
    version=importlib.metadata.version("prgrade"),
    prog_name="prgrade",
)
@click.option(
    "--config",
    "config_path",
    default=".prgrade.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRGRADE_CONFIG",
)
@click.option(
    "--db",
    "database_path",
    default=None,
    help="SQLite database shared by the API and workers. Overrides config file.",
    envvar="PRGRADE_DATABASE",
)
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.pass_context
def main(ctx: click.Context, config_path: str, database_path: str | None, log_level: str):
    """Webhook-driven PR review, scoring and portfolio pipeline."""
    from prgrade_core.config import load_config

    _configure_logging(log_level)
    ctx.ensure_object(dict)

    config = load_config(config_path, cli_overrides={"database_path": database_path})
    ctx.obj["config"] = config

    # Built lazily: `score` never touches the database.
    def runtime():
        if "runtime" not in ctx.obj:
            ctx.obj["runtime"] = _build_runtime(config)
            ctx.call_on_close(ctx.obj["runtime"].close)
        return ctx.obj["runtime"]

    ctx.obj["get_runtime"] = runtime


main.add_command(serve_cmd)
main.add_command(work_cmd)
main.add_command(queues_cmd)
main.add_command(prune_cmd)
main.add_command(dead_letters_cmd)
main.add_command(discover_cmd)
main.add_command(score_cmd)
