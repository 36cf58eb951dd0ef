"""history command — display the stored time series."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prpulse_store.errors import StoreError

console = Console()


@click.command("history")
@click.option(
    "--days",
    type=click.IntRange(min=1),
    default=14,
    show_default=True,
    help="Number of most recent days to show.",
)
@click.pass_context
def history_cmd(ctx, days: int):
    """Show the latest daily pull request counts from the snapshot.

    Reads the configured store only; nothing is fetched from GitHub when the
    snapshot is a local file.
    """
    store = ctx.obj["store"]
    try:
        snapshot = store.load(quarantine=False)
    except StoreError as e:
        raise click.ClickException(f"Could not read the snapshot: {e}")

    if not snapshot.projects and not snapshot.pull_request_counts:
        console.print("[yellow]The snapshot is empty. Run `prpulse update` first.[/yellow]")
        return

    latest = snapshot.latest_project_count()
    console.print(f"\n[bold]Commits tracked:[/bold] {len(snapshot.projects)}")
    console.print(f"[bold]Latest subdir count:[/bold] {latest if latest is not None else '—'}")
    for label, value in (
        ("Commit watermark", snapshot.last_commit_watermark),
        ("PR watermark", snapshot.last_pr_watermark),
    ):
        console.print(f"[bold]{label}:[/bold] {value.isoformat() if value else '—'}")

    dates = sorted(snapshot.pull_request_counts)[-days:]
    if not dates:
        return

    table = Table(title="Open pull requests", show_header=True, header_style="bold cyan")
    table.add_column("Date", width=12)
    table.add_column("Open", justify="right")
    table.add_column("Stalled", justify="right")
    for day in reversed(dates):
        stalled = snapshot.stalled_pull_request_counts.get(day, 0)
        style = "red" if stalled else "white"
        table.add_row(day, str(snapshot.pull_request_counts[day]), f"[{style}]{stalled}[/{style}]")
    console.print(table)
