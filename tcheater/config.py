"""Configuration management for tcheater.

Storage Structure
-----------------
~/.tcheater/                  # override with TCHEATER_HOME
├── config.yaml               # settings below
├── projects.yaml             # project definitions (id, name, color)
├── tasks.yaml                # task list for the task source
└── remote/                   # default document store (point remote_dir
                              # at a synced folder to share between machines)

config.yaml
-----------
    granularity_minutes: 15        # rounding grid, must divide a day
    first_weekday: monday          # start of the week view
    sync_interval_seconds: 60      # background reconciliation period
    remote_dir: ~/Dropbox/tcheater # document store location
    task_url_prefix: https://tasks.example.com/task/
    log_level: WARNING

TCHEATER_REMOTE_DIR overrides remote_dir.
"""

import logging
import os
from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from tcheater.atomic import atomic_write_yaml
from tcheater.errors import CONFIG_INVALID, Result, TcheaterError, err, ok
from tcheater.timemath import check_granularity, parse_weekday

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"
PROJECTS_FILENAME = "projects.yaml"
TASKS_FILENAME = "tasks.yaml"


def tcheater_home() -> Path:
    """Directory holding config, project and task definitions."""
    if env_home := os.environ.get("TCHEATER_HOME"):
        return Path(env_home).expanduser()
    return Path.home() / ".tcheater"


@dataclass
class Config:
    """tcheater configuration."""

    granularity_minutes: int = 15
    first_weekday: str = "monday"
    sync_interval_seconds: int = 60
    remote_dir: str | None = None
    tasks_file: str | None = None
    projects_file: str | None = None
    task_url_prefix: str | None = None
    log_level: str = "WARNING"

    @classmethod
    def load(cls, home: Path | None = None) -> "Config":
        """Load configuration from file and environment."""
        home = home or tcheater_home()
        config_path = home / CONFIG_FILENAME
        config = cls()

        if config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            config = cls._from_dict(data)
            logger.debug(f"Loaded config from {config_path}")

        # Environment variables override file config
        if env_remote := os.environ.get("TCHEATER_REMOTE_DIR"):
            config.remote_dir = env_remote

        return config

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        # Only apply known fields
        valid_fields = {f.name for f in fields(cls)}
        unknown = set(data) - valid_fields
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in valid_fields})

    def save(self, home: Path | None = None) -> Result[Path, TcheaterError]:
        """Save non-default values to config.yaml."""
        home = home or tcheater_home()
        defaults = Config()
        data = {
            key: value
            for key, value in self.to_dict().items()
            if getattr(defaults, key) != value
        }
        return atomic_write_yaml(home / CONFIG_FILENAME, data)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def validate(self) -> Result["Config", TcheaterError]:
        """Check values that would otherwise fail deep inside the engine."""
        problems = []
        try:
            check_granularity(timedelta(minutes=self.granularity_minutes))
        except (TypeError, ValueError) as e:
            problems.append(f"granularity_minutes: {e}")
        try:
            parse_weekday(self.first_weekday)
        except (AttributeError, ValueError) as e:
            problems.append(f"first_weekday: {e}")
        if not isinstance(self.sync_interval_seconds, int) or self.sync_interval_seconds <= 0:
            problems.append("sync_interval_seconds: must be a positive integer")

        if problems:
            return err(
                TcheaterError(
                    code=CONFIG_INVALID,
                    message="Invalid configuration: " + "; ".join(problems),
                    context={"problems": problems},
                )
            )
        return ok(self)

    @property
    def granularity(self) -> timedelta:
        return timedelta(minutes=self.granularity_minutes)

    @property
    def first_weekday_number(self) -> int:
        return parse_weekday(self.first_weekday)

    def remote_path(self, home: Path | None = None) -> Path:
        if self.remote_dir:
            return Path(self.remote_dir).expanduser()
        return (home or tcheater_home()) / "remote"

    def tasks_path(self, home: Path | None = None) -> Path:
        if self.tasks_file:
            return Path(self.tasks_file).expanduser()
        return (home or tcheater_home()) / TASKS_FILENAME

    def projects_path(self, home: Path | None = None) -> Path:
        if self.projects_file:
            return Path(self.projects_file).expanduser()
        return (home or tcheater_home()) / PROJECTS_FILENAME


def ensure_directories(home: Path | None = None) -> Path:
    """Ensure the tcheater home directory exists and return it."""
    home = home or tcheater_home()
    home.mkdir(parents=True, exist_ok=True, mode=0o700)
    return home
