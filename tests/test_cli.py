"""Tests for the tcheater command line."""

from datetime import date, timedelta
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from tcheater import cli
from tcheater.cli import main


@pytest.fixture
def home(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("TCHEATER_HOME", str(tmp_path))
    monkeypatch.delenv("TCHEATER_REMOTE_DIR", raising=False)
    return tmp_path


@pytest.fixture
def runner(monkeypatch) -> CliRunner:
    # Wide enough that tables never wrap URLs or notes
    monkeypatch.setattr(cli.console, "width", 200)
    return CliRunner()


def _documents(home: Path) -> list[dict]:
    return [yaml.safe_load(path.read_text()) for path in sorted((home / "remote").glob("*.yaml"))]


class TestAdd:
    """tcheater add"""

    def test_add_writes_document(self, runner, home):
        result = runner.invoke(main, ["add", "acme", "9:00", "10:00", "--note", "review", "--task", "4521"])

        assert result.exit_code == 0, result.output
        assert "Added #1" in result.output
        (doc,) = _documents(home)
        assert doc["project_id"] == "acme"
        assert doc["task_id"] == "4521"
        assert doc["note"] == "review"
        assert "T09:00:00" in doc["start"]
        assert doc["revision"] == 1

    def test_add_names_the_task(self, runner, home):
        (home / "tasks.yaml").write_text('tasks:\n  - id: "4521"\n    name: Checkout redesign\n')

        result = runner.invoke(main, ["add", "acme", "9:00", "10:00", "--task", "4521"])

        assert result.exit_code == 0, result.output
        assert "(4521 - Checkout redesign)" in result.output

    def test_add_rounds_times(self, runner, home):
        runner.invoke(main, ["add", "acme", "9:04", "9:53"])

        (doc,) = _documents(home)
        assert "T09:00:00" in doc["start"]
        assert "T10:00:00" in doc["end"]

    def test_overlap_rejected(self, runner, home):
        runner.invoke(main, ["add", "acme", "9:00", "10:00"])

        result = runner.invoke(main, ["add", "acme", "9:30", "10:30"])

        assert result.exit_code == 1
        assert "OVERLAP" in result.output
        assert len(_documents(home)) == 1

    def test_empty_interval_rejected(self, runner, home):
        result = runner.invoke(main, ["add", "acme", "9:00", "9:00"])

        assert result.exit_code == 1
        assert "INVALID_INTERVAL" in result.output

    def test_bad_time(self, runner, home):
        result = runner.invoke(main, ["add", "acme", "nine", "10:00"])
        assert result.exit_code == 2
        assert "Not a time" in result.output

    def test_unknown_project(self, runner, home):
        (home / "projects.yaml").write_text("projects:\n  - id: acme\n")

        result = runner.invoke(main, ["add", "other", "9:00", "10:00"])

        assert result.exit_code == 1
        assert "UNKNOWN_PROJECT" in result.output

    def test_date_outside_week_rejected(self, runner, home):
        result = runner.invoke(main, ["add", "acme", "9:00", "10:00", "--day", "2020-03-02"])

        assert result.exit_code == 2
        assert "not in the week" in result.output
        assert _documents(home) == []

    def test_date_in_selected_week_accepted(self, runner, home):
        last_week = (date.today() - timedelta(days=7)).isoformat()

        result = runner.invoke(main, ["-w", "-1", "add", "acme", "9:00", "10:00", "--day", last_week])

        assert result.exit_code == 0, result.output
        (doc,) = _documents(home)
        assert doc["start"].startswith(f"{last_week}T09:00:00")

    def test_timestamp_outside_week_rejected(self, runner, home):
        result = runner.invoke(main, ["add", "acme", "2020-03-02T09:00", "2020-03-02T10:00"])

        assert result.exit_code == 2
        assert "outside the week" in result.output
        assert _documents(home) == []

    def test_nothing_changed_when_week_cannot_be_loaded(self, runner, home):
        (home / "remote" / "broken.yaml").mkdir(parents=True)

        result = runner.invoke(main, ["add", "acme", "9:00", "10:00"])

        assert result.exit_code == 1
        assert "nothing changed" in result.output
        assert [path.name for path in (home / "remote").iterdir()] == ["broken.yaml"]

    def test_unreachable_remote_reports_unsaved(self, runner, home, monkeypatch):
        blocker = home / "blocker"
        blocker.write_text("")
        monkeypatch.setenv("TCHEATER_REMOTE_DIR", str(blocker / "remote"))

        result = runner.invoke(main, ["add", "acme", "9:00", "10:00"])

        assert result.exit_code == 1
        assert "not saved" in result.output


class TestEditCommands:
    """edit, shift, split, register and rm on an existing checkpoint."""

    @pytest.fixture(autouse=True)
    def existing(self, runner, home):
        result = runner.invoke(main, ["add", "acme", "9:00", "11:00", "--note", "work"])
        assert result.exit_code == 0, result.output

    def test_edit_note_and_end(self, runner, home):
        result = runner.invoke(main, ["edit", "1", "--note", "changed", "--end", "11:30"])

        assert result.exit_code == 0, result.output
        (doc,) = _documents(home)
        assert doc["note"] == "changed"
        assert "T11:30:00" in doc["end"]
        assert doc["revision"] == 2

    def test_edit_unknown(self, runner, home):
        result = runner.invoke(main, ["edit", "7", "--note", "x"])
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_shift(self, runner, home):
        result = runner.invoke(main, ["shift", "1", "--by", "15"])

        assert result.exit_code == 0, result.output
        (doc,) = _documents(home)
        assert "T09:15:00" in doc["start"]
        assert "T11:15:00" in doc["end"]

    def test_split(self, runner, home):
        result = runner.invoke(main, ["split", "1"])

        assert result.exit_code == 0, result.output
        docs = sorted(_documents(home), key=lambda doc: doc["start"])
        assert len(docs) == 2
        assert "T10:00:00" in docs[0]["end"]
        assert "T10:00:00" in docs[1]["start"]
        assert docs[1]["note"] == "work"

    def test_register(self, runner, home):
        result = runner.invoke(main, ["register", "1"])

        assert result.exit_code == 0, result.output
        assert "registered" in result.output
        assert _documents(home)[0]["registered"] is True

    def test_rm(self, runner, home):
        result = runner.invoke(main, ["rm", "1"])

        assert result.exit_code == 0, result.output
        assert _documents(home) == []

    def test_edit_start_outside_week_rejected(self, runner, home):
        result = runner.invoke(main, ["edit", "1", "--start", "2020-03-02T09:00", "--end", "2020-03-02T10:00"])

        assert result.exit_code == 2
        assert "outside the week" in result.output
        (doc,) = _documents(home)
        assert "T09:00:00" in doc["start"]
        assert doc["revision"] == 1

    def test_shift_out_of_week_rejected(self, runner, home):
        result = runner.invoke(main, ["shift", "1", "--by", str(7 * 24 * 60)])

        assert result.exit_code == 2
        assert "outside the week" in result.output
        assert _documents(home)[0]["revision"] == 1

    def test_month_view(self, runner, home):
        result = runner.invoke(main, ["week", "--month", str(date.today().month)])

        assert result.exit_code == 0, result.output
        assert "Week of" in result.output
        assert "work" in result.output

    def test_week_shows_checkpoint(self, runner, home):
        result = runner.invoke(main, ["week"])

        assert result.exit_code == 0, result.output
        assert "acme" in result.output
        assert "work" in result.output
        assert "2h" in result.output
        assert "Not registered" in result.output
        assert "Sync: synced" in result.output

    def test_other_week_is_empty(self, runner, home):
        result = runner.invoke(main, ["week", "--offset", "-1"])

        assert result.exit_code == 0, result.output
        assert "No checkpoints this week" in result.output

    def test_sync_pulls(self, runner, home):
        result = runner.invoke(main, ["sync"])

        assert result.exit_code == 0, result.output
        assert "1 pulled" in result.output


class TestListings:
    """tasks, projects and config."""

    def test_tasks(self, runner, home):
        (home / "tasks.yaml").write_text('tasks:\n  - id: "4521"\n    name: Checkout redesign\n    time_spent: 12h\n')
        (home / "config.yaml").write_text("task_url_prefix: https://tasks.example.com/task/\n")

        result = runner.invoke(main, ["tasks", "--urls"])

        assert result.exit_code == 0, result.output
        assert "Checkout redesign" in result.output
        assert "https://tasks.example.com/task/4521" in result.output

    def test_no_tasks(self, runner, home):
        result = runner.invoke(main, ["tasks"])
        assert result.exit_code == 0
        assert "No tasks found" in result.output

    def test_projects(self, runner, home):
        (home / "projects.yaml").write_text("projects:\n  - id: acme\n    name: ACME webshop\n    color: 33\n")

        result = runner.invoke(main, ["projects"])

        assert result.exit_code == 0, result.output
        assert "ACME webshop" in result.output

    def test_config_set_and_show(self, runner, home):
        result = runner.invoke(main, ["config", "set", "granularity_minutes", "30"])

        assert result.exit_code == 0, result.output
        assert yaml.safe_load((home / "config.yaml").read_text()) == {"granularity_minutes": 30}

        shown = runner.invoke(main, ["config", "show"])
        assert "granularity_minutes: 30" in shown.output

    def test_config_set_rejects_invalid(self, runner, home):
        result = runner.invoke(main, ["config", "set", "granularity_minutes", "7"])

        assert result.exit_code == 1
        assert "CONFIG_INVALID" in result.output
        assert not (home / "config.yaml").exists()

    def test_config_set_unknown_key(self, runner, home):
        result = runner.invoke(main, ["config", "set", "colour", "blue"])
        assert result.exit_code == 1
        assert "Unknown config key" in result.output

    def test_invalid_config_blocks_tracking(self, runner, home):
        (home / "config.yaml").write_text("granularity_minutes: 7\n")

        result = runner.invoke(main, ["week"])

        assert result.exit_code == 1
        assert "CONFIG_INVALID" in result.output

    def test_month_without_weeks_yet(self, runner, home):
        today = date.today()
        if today.month == 12:
            pytest.skip("no later month in this year")

        result = runner.invoke(main, ["week", "--month", str(today.month + 1)])

        assert result.exit_code == 0, result.output
        assert "No weeks of that month so far" in result.output
