"""serve and work commands: the long-running processes."""

from __future__ import annotations

import time

import click
from rich.console import Console

from prgrade_core.config import STAGES

console = Console()


@click.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--with-workers", is_flag=True, help="Also run every stage worker inside the API process.")
@click.pass_context
def serve_cmd(ctx, host: str, port: int, with_workers: bool):
    """Run the HTTP API: GitHub webhooks, submission actions and internal endpoints."""
    import uvicorn

    from prgrade_api.app import create_app

    config = ctx.obj["config"]
    if not config.get("github_webhook_secret"):
        console.print("[yellow]GITHUB_WEBHOOK_SECRET is not set; every webhook will be rejected.[/yellow]")

    app = create_app(ctx.obj["get_runtime"](), start_workers=with_workers)
    uvicorn.run(app, host=host, port=port, log_config=None)


@click.command("work")
@click.option(
    "--stage",
    "stages",
    multiple=True,
    type=click.Choice(STAGES),
    help="Stage to run. Repeat for several; default is all of them.",
)
@click.option("--once", is_flag=True, help="Process the jobs that are ready now, then exit.")
@click.pass_context
def work_cmd(ctx, stages: tuple[str, ...], once: bool):
    """Run stage workers against the shared job queue."""
    runtime = ctx.obj["get_runtime"]()
    stages = stages or STAGES

    if once:
        workers = runtime.build_workers(stages)
        processed = 0
        # Later stages are fed by earlier ones, so keep sweeping until a pass finds nothing.
        while True:
            swept = 0
            for worker in workers:
                while worker.run_once():
                    swept += 1
            if not swept:
                break
            processed += swept
        console.print(f"Processed [bold]{processed}[/bold] job(s).")
        return

    runtime.start_workers(stages)
    console.print(f"[green]Workers running:[/green] {', '.join(stages)}. Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping workers...")
