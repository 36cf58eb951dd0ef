"""update command — run one reconciliation cycle."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prpulse_core.errors import AuthError, ConfigError
from prpulse_core.gh.repository import GithubUpstream, authenticate
from prpulse_core.reconciler import ReconcileContext, Reconciler
from prpulse_store.errors import StoreError

console = Console()


def build_reconciler(ctx: click.Context) -> Reconciler:
    """Validate config and credentials, then wire up a Reconciler.

    Shared by `update` and `serve`. Fails fast: a bad config is a UsageError,
    a token that cannot read the repository is a ClickException (exit 1),
    both before any cycle runs.
    """
    from prpulse_core.config import validate_config

    config = ctx.obj["config"]
    try:
        validate_config(config)
    except ConfigError as e:
        raise click.UsageError(str(e))

    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set PRPULSE_GITHUB_TOKEN or GITHUB_TOKEN, or run `gh auth login` first."
        )

    try:
        repo = authenticate(token, config["repo"], per_page=config["per_page"], timeout=config["request_timeout"])
    except AuthError as e:
        raise click.ClickException(f"Authentication failed: {e}")

    upstream = GithubUpstream.from_config(repo, config)
    return Reconciler(ReconcileContext.from_config(config, upstream, ctx.obj["store"]))


def print_result(result) -> None:
    snapshot = result.snapshot
    table = Table(title="Reconciliation cycle", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Commits listed", str(result.commits_seen))
    table.add_row("New commits", str(result.new_commits))
    table.add_row("Pull requests listed", str(result.pull_requests_seen))
    table.add_row("Dates updated", str(len(result.dates_updated)))
    latest = snapshot.latest_project_count()
    table.add_row("Latest subdir count", "—" if latest is None else str(latest))
    table.add_row("Commit watermark", _fmt(snapshot.last_commit_watermark))
    table.add_row("PR watermark", _fmt(snapshot.last_pr_watermark))
    console.print(table)
    for error in result.errors:
        console.print(f"[red]Step failed: {error}[/red]")


def _fmt(value) -> str:
    return value.isoformat() if value is not None else "—"


@click.command("update")
@click.option(
    "--backfill",
    is_flag=True,
    help="Ignore the watermarks and recompute daily counts over the whole history.",
)
@click.pass_context
def update_cmd(ctx, backfill: bool):
    """Fetch new commits and pull requests and update the snapshot.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or PRPULSE_GITHUB_TOKEN, or use gh CLI)
    """
    reconciler = build_reconciler(ctx)

    try:
        result = reconciler.run_cycle(backfill=backfill)
    except StoreError as e:
        raise click.ClickException(f"Could not persist the snapshot: {e}")

    if result is None:
        console.print("[yellow]Another cycle is already running.[/yellow]")
        return

    print_result(result)
    if not result.ok:
        ctx.exit(1)
