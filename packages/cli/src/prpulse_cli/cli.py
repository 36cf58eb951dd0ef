"""CLI entry point for prpulse.

Commands:
  update   — run one reconciliation cycle (for cron or CI triggers)
  serve    — serve the dashboard data and reconcile on a schedule
  history  — display the stored daily counters and watermarks
  init     — write .prpulse.yml and an optional scheduled workflow
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prpulse_cli.commands.history import history_cmd
from prpulse_cli.commands.init import init_cmd
from prpulse_cli.commands.serve import serve_cmd
from prpulse_cli.commands.update import update_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured snapshot store from .prpulse.yml settings.

    Store selection:
      store: gist   → GistStore     (requires gist_id and a GitHub token)
      (default)     → JsonFileStore (snapshot_path, default commit_history.json)
    """
    from prpulse_store.file import JsonFileStore

    if config.get("store") == "gist":
        gist_id = config.get("gist_id")
        token = config.get("github_token")
        if gist_id and token:
            from prpulse_store.gist import GistStore

            return GistStore(gist_id=gist_id, token=token)
        console.print("[yellow]GistStore requires gist_id and a GitHub token. Falling back to the file store.[/yellow]")

    return JsonFileStore(config.get("snapshot_path") or "commit_history.json")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # PyGithub and urllib3 log every request at DEBUG.
    for noisy in ("github", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("prpulse"),
    prog_name="prpulse",
)
@click.option(
    "--config",
    "config_path",
    default=".prpulse.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRPULSE_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Track a GitHub repository's commits and pull requests over time."""
    from prpulse_core.config import load_config
    from prpulse_cli.auth import resolve_github_token

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)

    # Resolve the token once so every subcommand (and the Gist store) shares it.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(update_cmd)
main.add_command(serve_cmd)
main.add_command(history_cmd)
main.add_command(init_cmd)
