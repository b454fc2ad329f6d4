"""Project definitions.

projects.yaml:

    projects:
      - id: acme
        name: ACME webshop
        color: 33        # 256-color palette index
      - id: internal
        name: Internal meetings
        color: 244
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import yaml

from tcheater.errors import CONFIG_INVALID, INVALID_ID, UNKNOWN_PROJECT, Result, TcheaterError, err, ok
from tcheater.types import ProjectId

logger = logging.getLogger(__name__)

_PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class Project:
    """A project time can be booked on."""

    id: ProjectId
    name: str
    color: int | None = None

    @property
    def style(self) -> str | None:
        """Rich color for this project, if one is configured."""
        return f"color({self.color})" if self.color is not None else None


def load_projects(path: Path) -> Result[list[Project], TcheaterError]:
    """Read project definitions. A missing file means no projects."""
    if not path.exists():
        return ok([])

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        projects = [
            Project(
                id=ProjectId(str(entry["id"])),
                name=str(entry.get("name", entry["id"])),
                color=int(entry["color"]) if entry.get("color") is not None else None,
            )
            for entry in data.get("projects", [])
        ]
    except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError, AttributeError) as e:
        logger.error(f"Failed to load projects from {path}: {e}")
        return err(
            TcheaterError(
                code=CONFIG_INVALID,
                message=f"Failed to load projects from {path}: {e}",
                context={"path": str(path)},
            )
        )

    return ok(projects)


def find_project(projects: list[Project], project_id: str) -> Project | None:
    return next((project for project in projects if project.id == project_id), None)


def parse_project_id(
    raw: str,
    projects: list[Project] | None = None,
) -> Result[ProjectId, TcheaterError]:
    """Validate a user-supplied project id.

    Args:
        raw: Identifier as typed
        projects: Known projects; when given (and non-empty) the id must be one of them

    Returns:
        Ok(ProjectId), or Err with INVALID_ID / UNKNOWN_PROJECT
    """
    value = raw.strip()
    if not _PROJECT_ID_RE.match(value):
        return err(
            TcheaterError(
                code=INVALID_ID,
                message=f"Invalid project id: {raw!r}",
                context={"project_id": raw},
            )
        )
    if projects and find_project(projects, value) is None:
        return err(
            TcheaterError(
                code=UNKNOWN_PROJECT,
                message=f"Unknown project: {value}",
                context={"project_id": value, "known": [p.id for p in projects]},
            )
        )
    return ok(ProjectId(value))
