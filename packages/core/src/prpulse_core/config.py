import copy
import os
import re
from datetime import date
from pathlib import Path
from typing import Optional

import yaml

from prpulse_core.errors import ConfigError

DEFAULT_CONFIG: dict = {
    "repo": None,  # "owner/name"
    "tracked_path": "projects",
    "snapshot_path": "commit_history.json",
    "store": "file",  # "file" | "gist"
    "gist_id": None,
    "earliest_tracked_date": None,  # None = full history on the first run
    "per_page": 100,
    "max_workers": 4,
    "checkpoint_every": 1,
    "request_timeout": 30,
    "retry": {"max_attempts": 3, "base_delay": 1.0, "max_delay": 30.0, "jitter": 0.5},
    "stall_policy": "age",  # "age" | "activity", see prpulse_core.stall
    "stall_after_days": 14,
    "activity_window_days": 7,
    "exempt_labels": ["stall-exempt"],
    "schedule": {"every_minutes": 15, "at_hours": None},  # at_hours wins when set
    "host": "0.0.0.0",
    "port": 3119,
    "static_dir": "public",
}

# Environment variables that override repository coordinates from the file.
_ENV_OVERRIDES = {
    "PRPULSE_REPO": "repo",
    "PRPULSE_TRACKED_PATH": "tracked_path",
    "PRPULSE_SNAPSHOT_PATH": "snapshot_path",
}

_REPO_RE = re.compile(r"^[\w.-]+/[\w.-]+$")
_STORES = ("file", "gist")
_STALL_POLICIES = ("age", "activity")
_POSITIVE_INTS = ("per_page", "max_workers", "checkpoint_every", "stall_after_days", "activity_window_days")


def load_config(config_path: str = ".prpulse.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prpulse.yml in the current directory
      3. PRPULSE_* environment variables
      4. CLI argument overrides
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        for key in ("retry", "schedule"):
            if isinstance(file_config.get(key), dict):
                file_config[key] = {**config[key], **file_config[key]}
        config.update(file_config)

    for env_name, key in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            config[key] = value

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    config["github_token"] = os.environ.get("PRPULSE_GITHUB_TOKEN") or os.environ.get("GITHUB_TOKEN")

    return config


def validate_config(config: dict) -> dict:
    """Check the settings a reconciliation cycle depends on.

    Raises ConfigError naming the first bad key. Normalises
    ``earliest_tracked_date`` to a ``datetime.date`` and returns the config.
    """
    repo = config.get("repo")
    if not repo or not _REPO_RE.match(str(repo)):
        raise ConfigError(f"repo must be set as 'owner/name', got {repo!r}.")

    if not str(config.get("tracked_path") or "").strip("/"):
        raise ConfigError("tracked_path must name a directory in the repository.")

    if config.get("store") not in _STORES:
        raise ConfigError(f"Unknown store: {config.get('store')!r}. Choose 'file' or 'gist'.")

    if config.get("stall_policy") not in _STALL_POLICIES:
        raise ConfigError(f"Unknown stall_policy: {config.get('stall_policy')!r}. Choose 'age' or 'activity'.")

    for key in _POSITIVE_INTS:
        value = config.get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigError(f"{key} must be a positive integer, got {value!r}.")

    if not isinstance(config.get("request_timeout"), (int, float)) or config["request_timeout"] <= 0:
        raise ConfigError(f"request_timeout must be a positive number, got {config.get('request_timeout')!r}.")

    retry = config.get("retry") or {}
    if not isinstance(retry.get("max_attempts"), int) or retry["max_attempts"] < 1:
        raise ConfigError(f"retry.max_attempts must be a positive integer, got {retry.get('max_attempts')!r}.")

    earliest = config.get("earliest_tracked_date")
    if earliest is not None and not isinstance(earliest, date):
        try:
            earliest = date.fromisoformat(str(earliest))
        except ValueError:
            raise ConfigError(f"earliest_tracked_date must be YYYY-MM-DD, got {earliest!r}.")
    config["earliest_tracked_date"] = earliest

    _validate_schedule(config.get("schedule") or {})
    return config


def _validate_schedule(schedule: dict) -> None:
    at_hours = schedule.get("at_hours")
    if at_hours:
        if not isinstance(at_hours, list) or not all(isinstance(h, int) and 0 <= h <= 23 for h in at_hours):
            raise ConfigError(f"schedule.at_hours must be a list of hours 0-23, got {at_hours!r}.")
        return
    every = schedule.get("every_minutes")
    if not isinstance(every, (int, float)) or every <= 0:
        raise ConfigError(f"schedule.every_minutes must be a positive number, got {every!r}.")
