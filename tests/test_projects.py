"""Tests for tcheater.projects module."""

from pathlib import Path

from tcheater.errors import CONFIG_INVALID, INVALID_ID, UNKNOWN_PROJECT
from tcheater.projects import Project, find_project, load_projects, parse_project_id
from tcheater.types import ProjectId

PROJECTS_YAML = """\
projects:
  - id: acme
    name: ACME webshop
    color: 33
  - id: internal
"""


class TestLoadProjects:
    """Tests for load_projects()."""

    def test_loads_definitions(self, tmp_path: Path):
        path = tmp_path / "projects.yaml"
        path.write_text(PROJECTS_YAML)

        projects = load_projects(path).unwrap()

        assert projects == [
            Project(ProjectId("acme"), "ACME webshop", 33),
            Project(ProjectId("internal"), "internal", None),
        ]
        assert projects[0].style == "color(33)"
        assert projects[1].style is None

    def test_missing_file(self, tmp_path: Path):
        assert load_projects(tmp_path / "projects.yaml").value == []

    def test_broken_file(self, tmp_path: Path):
        path = tmp_path / "projects.yaml"
        path.write_text("projects:\n  - name: no id\n")

        assert load_projects(path).error.code == CONFIG_INVALID


class TestParseProjectId:
    """Tests for parse_project_id() and find_project()."""

    def test_any_valid_id_without_definitions(self):
        assert parse_project_id(" acme-2 ").value == "acme-2"

    def test_invalid_characters(self):
        for raw in ("", "  ", "has space", "-leading", "a/b"):
            assert parse_project_id(raw).error.code == INVALID_ID

    def test_must_be_known_when_defined(self):
        projects = [Project(ProjectId("acme"), "ACME")]

        assert parse_project_id("acme", projects).ok
        result = parse_project_id("other", projects)
        assert result.error.code == UNKNOWN_PROJECT
        assert result.error.context["known"] == ["acme"]

    def test_find_project(self):
        projects = [Project(ProjectId("acme"), "ACME")]
        assert find_project(projects, "acme").name == "ACME"
        assert find_project(projects, "nope") is None
