"""Unit tests for configuration management."""

from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
from pydantic import ValidationError
from tasktree.infrastructure.config import Config, ConfigManager, HierarchyConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from the user's environment and home config."""
    for var in (
        "TASKTREE_LOG_LEVEL",
        "TASKTREE_DB_PATH",
        "TASKTREE_MAX_DEPTH",
        "TASKTREE_BUSY_TIMEOUT_MS",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(Path, "home", lambda: tmp_path / "home")


class TestConfig:
    """Tests for Config model."""

    def test_default_config(self) -> None:
        """Test creating a config with defaults."""
        config = Config()

        assert config.log_level == "INFO"
        assert config.database.path is None
        assert config.database.busy_timeout_ms == 5000
        assert config.hierarchy.max_depth is None
        assert config.queue.max_name_length == 255

    def test_max_depth_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            HierarchyConfig(max_depth=0)


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_load_default_config(self) -> None:
        """Test loading config with no files present."""
        with TemporaryDirectory() as tmpdir:
            config = ConfigManager(project_root=Path(tmpdir)).load_config()

            assert config.log_level == "INFO"
            assert config.hierarchy.max_depth is None

    def test_config_hierarchy(self) -> None:
        """Project-local overrides win over project defaults."""
        with TemporaryDirectory() as tmpdir:
            project_root = Path(tmpdir)
            config_dir = project_root / ".tasktree"
            config_dir.mkdir()

            (config_dir / "config.yaml").write_text(
                """
log_level: INFO
hierarchy:
  max_depth: 5
queue:
  max_name_length: 100
                """
            )
            (config_dir / "local.yaml").write_text(
                """
log_level: DEBUG
hierarchy:
  max_depth: 3
                """
            )

            config = ConfigManager(project_root=project_root).load_config()

            assert config.log_level == "DEBUG"
            assert config.hierarchy.max_depth == 3
            # Untouched keys survive the merge
            assert config.queue.max_name_length == 100

    def test_env_vars_override_files(self, monkeypatch: pytest.MonkeyPatch) -> None:
        with TemporaryDirectory() as tmpdir:
            project_root = Path(tmpdir)
            config_dir = project_root / ".tasktree"
            config_dir.mkdir()
            (config_dir / "config.yaml").write_text("log_level: INFO\n")

            monkeypatch.setenv("TASKTREE_LOG_LEVEL", "WARNING")
            monkeypatch.setenv("TASKTREE_MAX_DEPTH", "4")
            monkeypatch.setenv("TASKTREE_BUSY_TIMEOUT_MS", "250")

            config = ConfigManager(project_root=project_root).load_config()

            assert config.log_level == "WARNING"
            assert config.hierarchy.max_depth == 4
            assert config.database.busy_timeout_ms == 250

    def test_database_path_default(self) -> None:
        with TemporaryDirectory() as tmpdir:
            project_root = Path(tmpdir)
            path = ConfigManager(project_root=project_root).get_database_path()

            assert path == project_root / ".tasktree" / "tasktree.db"
            assert path.parent.is_dir()

    def test_database_path_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        with TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "elsewhere.db"
            monkeypatch.setenv("TASKTREE_DB_PATH", str(target))

            assert ConfigManager(project_root=Path(tmpdir)).get_database_path() == target

    def test_numeric_db_path_stays_a_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        with TemporaryDirectory() as tmpdir:
            monkeypatch.setenv("TASKTREE_DB_PATH", "2024")

            config = ConfigManager(project_root=Path(tmpdir)).load_config()

            assert config.database.path == Path("2024")

    def test_non_numeric_max_depth_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        with TemporaryDirectory() as tmpdir:
            monkeypatch.setenv("TASKTREE_MAX_DEPTH", "deep")

            with pytest.raises(ValidationError):
                ConfigManager(project_root=Path(tmpdir)).load_config()

    def test_config_is_cached(self) -> None:
        with TemporaryDirectory() as tmpdir:
            manager = ConfigManager(project_root=Path(tmpdir))
            assert manager.load_config() is manager.load_config()
