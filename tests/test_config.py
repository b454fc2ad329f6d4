"""Tests for tcheater.config module."""

import stat
from datetime import timedelta
from pathlib import Path

import yaml

from tcheater.config import Config, ensure_directories, tcheater_home
from tcheater.errors import CONFIG_INVALID


class TestTcheaterHome:
    """Tests for tcheater_home()."""

    def test_env_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("TCHEATER_HOME", str(tmp_path / "custom"))
        assert tcheater_home() == tmp_path / "custom"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("TCHEATER_HOME", raising=False)
        assert tcheater_home() == Path.home() / ".tcheater"


class TestConfigLoad:
    """Tests for Config.load()."""

    def test_defaults_without_file(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("TCHEATER_REMOTE_DIR", raising=False)

        config = Config.load(tmp_path)

        assert config == Config()
        assert config.granularity == timedelta(minutes=15)
        assert config.first_weekday_number == 0

    def test_reads_file(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("TCHEATER_REMOTE_DIR", raising=False)
        (tmp_path / "config.yaml").write_text(
            "granularity_minutes: 30\nfirst_weekday: sunday\ntask_url_prefix: https://t/\n"
        )

        config = Config.load(tmp_path)

        assert config.granularity_minutes == 30
        assert config.first_weekday_number == 6
        assert config.task_url_prefix == "https://t/"

    def test_unknown_keys_ignored(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("TCHEATER_REMOTE_DIR", raising=False)
        (tmp_path / "config.yaml").write_text("granularity_minutes: 30\ncolour: blue\n")

        config = Config.load(tmp_path)

        assert config.granularity_minutes == 30
        assert not hasattr(config, "colour")

    def test_remote_dir_env_override(self, tmp_path: Path, monkeypatch):
        (tmp_path / "config.yaml").write_text("remote_dir: /from/file\n")
        monkeypatch.setenv("TCHEATER_REMOTE_DIR", str(tmp_path / "shared"))

        config = Config.load(tmp_path)

        assert config.remote_path(tmp_path) == tmp_path / "shared"


class TestConfigSave:
    """Tests for Config.save()."""

    def test_saves_only_custom_values(self, tmp_path: Path):
        config = Config(granularity_minutes=30, task_url_prefix="https://t/")

        result = config.save(tmp_path)

        assert result.ok
        data = yaml.safe_load((tmp_path / "config.yaml").read_text())
        assert data == {"granularity_minutes": 30, "task_url_prefix": "https://t/"}

    def test_saved_file_is_private(self, tmp_path: Path):
        Config(granularity_minutes=30).save(tmp_path)
        mode = stat.S_IMODE((tmp_path / "config.yaml").stat().st_mode)
        assert mode == 0o600

    def test_round_trip(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("TCHEATER_REMOTE_DIR", raising=False)
        original = Config(granularity_minutes=5, first_weekday="tuesday", remote_dir="/srv/tc")

        original.save(tmp_path)

        assert Config.load(tmp_path) == original


class TestConfigValidate:
    """Tests for Config.validate()."""

    def test_defaults_valid(self):
        assert Config().validate().ok

    def test_granularity_must_divide_day(self):
        result = Config(granularity_minutes=7).validate()

        assert result.error.code == CONFIG_INVALID
        assert "granularity_minutes" in result.error.message

    def test_collects_all_problems(self):
        result = Config(granularity_minutes=0, first_weekday="someday", sync_interval_seconds=-1).validate()

        assert len(result.error.context["problems"]) == 3


class TestPaths:
    """Tests for path helpers."""

    def test_defaults_under_home(self, tmp_path: Path):
        config = Config()
        assert config.remote_path(tmp_path) == tmp_path / "remote"
        assert config.tasks_path(tmp_path) == tmp_path / "tasks.yaml"
        assert config.projects_path(tmp_path) == tmp_path / "projects.yaml"

    def test_explicit_paths(self, tmp_path: Path):
        config = Config(tasks_file=str(tmp_path / "t.yaml"), projects_file=str(tmp_path / "p.yaml"))
        assert config.tasks_path() == tmp_path / "t.yaml"
        assert config.projects_path() == tmp_path / "p.yaml"

    def test_ensure_directories(self, tmp_path: Path):
        home = ensure_directories(tmp_path / "new")
        assert home.is_dir()
