"""init command — write .prpulse.yml and an optional scheduled workflow.

The workflow is the cron-style trigger for teams that do not keep a
long-running `prpulse serve` process: GitHub Actions runs `prpulse update`
at fixed hours and the snapshot lives in a Gist between runs.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

import click
import yaml
from rich.console import Console

console = Console()
logger = logging.getLogger(__name__)

_WORKFLOW_TEMPLATE = """\
name: prpulse update

on:
  schedule:
    - cron: "0 {hours} * * *"
  workflow_dispatch:

jobs:
  update:
    runs-on: ubuntu-latest
    concurrency: prpulse-update
    steps:
      - uses: actions/checkout@v4

      - name: Set up Python
        uses: actions/setup-python@v5
        with:
          python-version: "3.12"

      - name: Install prpulse
        run: pip install "prpulse=={version}"

      - name: Reconcile history
        env:
          PRPULSE_GITHUB_TOKEN: ${{{{ secrets.PRPULSE_GITHUB_TOKEN }}}}
        run: prpulse update
"""


@click.command("init")
@click.option("--repo", default=None, help="GitHub repository (owner/name). Auto-detected from git remote.")
def init_cmd(repo: str | None):
    """Set up prpulse for a repository.

    Creates .prpulse.yml and optionally a GitHub Actions workflow that runs
    `prpulse update` on a schedule.
    """
    console.print("\n[bold cyan]prpulse init[/bold cyan] — setup wizard\n")

    if repo is None:
        repo = _detect_repo_from_git()
        if repo:
            console.print(f"[dim]Detected repository: {repo}[/dim]")
        else:
            repo = click.prompt("GitHub repository (owner/name)")

    tracked_path = click.prompt("Directory whose subdirectories to count", default="projects")

    store_type = click.prompt(
        "Snapshot store",
        type=click.Choice(["file", "gist"]),
        default="file",
    )

    config: dict = {"repo": repo, "tracked_path": tracked_path, "store": store_type}
    if store_type == "file":
        snapshot_path = click.prompt("Snapshot file path", default="commit_history.json")
        if snapshot_path != "commit_history.json":
            config["snapshot_path"] = snapshot_path
    else:
        console.print(
            "\n[yellow]Note:[/yellow] the Gist store needs a token with [bold]gist[/bold] scope. "
            "Create the Gist once (e.g. `gh gist create`) and paste its ID."
        )
        config["gist_id"] = click.prompt("Gist ID")

    _write_config(config)
    console.print("[green]Created .prpulse.yml[/green]")

    if click.confirm("\nGenerate .github/workflows/prpulse.yml for scheduled updates?", default=store_type == "gist"):
        hours = click.prompt("UTC hours to run at (comma separated)", default="6,18")
        _write_workflow(hours)
        console.print("[green]Created .github/workflows/prpulse.yml[/green]")
        console.print(
            "\n[yellow]Remember to add [bold]PRPULSE_GITHUB_TOKEN[/bold] to your "
            "GitHub repository secrets (Settings → Secrets → Actions).[/yellow]"
        )

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print("Run a first cycle with: [bold]prpulse update[/bold]")


def _detect_repo_from_git() -> str | None:
    """Try to detect the GitHub repo slug from the git remote URL."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    url = result.stdout.strip()
    # https://github.com/owner/repo.git and git@github.com:owner/repo.git
    if "github.com" not in url:
        return None
    slug = url.split("github.com")[-1].lstrip("/:").removesuffix(".git")
    return slug if "/" in slug else None


def _write_config(config: dict) -> None:
    """Write or update .prpulse.yml, preserving any existing keys."""
    path = Path(".prpulse.yml")
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))


def _get_version() -> str:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("prpulse")
    except PackageNotFoundError:
        logger.debug("prpulse is not installed as a distribution; pinning 0.1.0 in the workflow.")
        return "0.1.0"


def _write_workflow(hours: str) -> None:
    workflow_dir = Path(".github/workflows")
    workflow_dir.mkdir(parents=True, exist_ok=True)
    cleaned = ",".join(h.strip() for h in hours.split(",") if h.strip())
    (workflow_dir / "prpulse.yml").write_text(_WORKFLOW_TEMPLATE.format(hours=cleaned, version=_get_version()))
