"""serve command — dashboard data endpoint plus scheduled reconciliation."""

from __future__ import annotations

import click
from rich.console import Console

from prpulse_cli.commands.update import build_reconciler
from prpulse_cli.web import create_app
from prpulse_core.scheduler import Scheduler

console = Console()


@click.command("serve")
@click.option("--host", default=None, help="Interface to bind. Overrides config file.")
@click.option("--port", type=int, default=None, help="Port to listen on. Overrides config file.")
@click.option("--no-schedule", is_flag=True, help="Only serve the snapshot; do not run reconciliation cycles.")
@click.pass_context
def serve_cmd(ctx, host: str | None, port: int | None, no_schedule: bool):
    """Serve GET /data and static assets, reconciling on a schedule.

    Credentials are checked before anything starts; the first cycle runs
    immediately, then every schedule.every_minutes or at schedule.at_hours.
    """
    config = ctx.obj["config"]
    store = ctx.obj["store"]

    scheduler = None
    if not no_schedule:
        reconciler = build_reconciler(ctx)
        scheduler = Scheduler.from_config(reconciler.run_cycle, config)
        scheduler.start()

    app = create_app(store, config.get("static_dir") or "public")
    bind_host = host or config["host"]
    bind_port = port or config["port"]
    console.print(f"[green]Serving dashboard data on http://{bind_host}:{bind_port}/data[/green]")
    try:
        app.run(host=bind_host, port=bind_port)
    finally:
        if scheduler is not None:
            scheduler.stop(timeout=5)
