"""queues, prune and dead-letters commands: queue operations."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("queues")
@click.pass_context
def queues_cmd(ctx):
    """Show job counts for every stage queue."""
    runtime = ctx.obj["get_runtime"]()
    counts = runtime.queue_counts()

    table = Table(title="Queues", show_header=True, header_style="bold cyan")
    table.add_column("Stage", style="bold")
    for column in ("waiting", "delayed", "active", "completed", "failed"):
        table.add_column(column.capitalize(), justify="right")
    for stage, row in counts.items():
        table.add_row(stage, *(str(row.get(c, 0)) for c in ("waiting", "delayed", "active", "completed", "failed")))
    console.print(table)
    console.print(f"Dead letters: [bold]{runtime.dead_letters.count()}[/bold]")


@click.command("prune")
@click.pass_context
def prune_cmd(ctx):
    """Apply each stage's retention policy now."""
    runtime = ctx.obj["get_runtime"]()
    total = 0
    for worker in runtime.build_workers():
        removed = worker.prune()
        total += removed
        console.print(f"{worker.stage}: removed {removed} job(s)")
    console.print(f"[green]Pruned {total} job(s).[/green]")
    if runtime.response_cache is not None:
        console.print(f"Expired {runtime.response_cache.purge_expired()} cached LLM response(s).")


@click.command("dead-letters")
@click.option("--submission", "submission_id", default=None, help="Only records for this submission.")
@click.option("--queue", default=None, help="Only records from this stage queue.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.option("--show", "record_id", type=int, default=None, help="Print one record in full, stack included.")
@click.pass_context
def dead_letters_cmd(ctx, submission_id: str | None, queue: str | None, limit: int, record_id: int | None):
    """Inspect jobs that exhausted their retries."""
    store = ctx.obj["get_runtime"]().dead_letters

    if record_id is not None:
        record = store.get(record_id)
        if record is None:
            raise click.ClickException(f"Dead letter {record_id} not found.")
        console.print(f"[bold]#{record.id}[/bold] {record.original_queue} job {record.original_job_id}")
        console.print(f"Failed at: {record.failed_at}  attempts: {record.failure_count}")
        console.print(f"Reason: [red]{record.failure_reason}[/red]")
        console.print_json(json.dumps(record.payload))
        if record.failure_stack:
            console.print(record.failure_stack, markup=False, highlight=False)
        return

    records = store.list(submission_id=submission_id, queue=queue, limit=limit)
    if not records:
        console.print("[yellow]No dead letters found.[/yellow]")
        return

    table = Table(title="Dead Letters", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold", justify="right")
    table.add_column("Queue", width=12)
    table.add_column("Submission", max_width=36)
    table.add_column("PR", width=24)
    table.add_column("Attempts", justify="right")
    table.add_column("Reason", max_width=50)
    table.add_column("Failed At", width=20)

    for r in records:
        pr = f"{r.repo_full_name}#{r.pr_number}" if r.repo_full_name and r.pr_number else ""
        table.add_row(
            str(r.id),
            r.original_queue,
            r.submission_id or "",
            pr,
            str(r.failure_count),
            r.failure_reason[:50],
            r.failed_at[:19].replace("T", " "),
        )

    console.print(table)
