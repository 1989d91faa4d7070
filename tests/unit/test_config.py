"""Tests for settings resolution and backend wiring."""

from pathlib import Path

import pytest

from schemaledger.config import DEFAULT_SRC, Settings, connect, load_settings
from schemaledger.exceptions import ConfigError
from schemaledger.executors import SQLExecutor
from schemaledger.stores import SQLITE


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from the caller's environment and working directory."""
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_SRC", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.mark.unit
class TestLoadSettings:
    """Tests for load_settings()."""

    def test_should_use_defaults(self) -> None:
        """Verify defaults apply without config, environment or overrides."""
        assert load_settings() == Settings(url=None, src=DEFAULT_SRC, quiet=False)

    def test_should_read_default_config_file(self, tmp_path: Path) -> None:
        """Verify schemaledger.yaml in the working directory is picked up."""
        (tmp_path / "schemaledger.yaml").write_text("url: sqlite:///app.db\nsrc: db/migrations\n")

        settings = load_settings()

        assert settings.url == "sqlite:///app.db"
        assert settings.src == "db/migrations"

    def test_should_prefer_environment_over_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify environment variables override the config file."""
        config = tmp_path / "custom.yaml"
        config.write_text("url: sqlite:///file.db\nquiet: true\n")
        monkeypatch.setenv("DATABASE_URL", "sqlite:///env.db")

        settings = load_settings(config)

        assert settings.url == "sqlite:///env.db"
        assert settings.quiet is True

    def test_should_prefer_overrides_over_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify explicit overrides win and None overrides are ignored."""
        monkeypatch.setenv("DATABASE_SRC", "env/migrations")

        settings = load_settings(url="sqlite:///cli.db", src=None)

        assert settings.url == "sqlite:///cli.db"
        assert settings.src == "env/migrations"

    def test_should_accept_empty_config_file(self, tmp_path: Path) -> None:
        """Verify an empty config file yields defaults."""
        config = tmp_path / "empty.yaml"
        config.write_text("")
        assert load_settings(config).src == DEFAULT_SRC

    @pytest.mark.parametrize("content", ["invalid: yaml: content:", "- a list", "quiet: [1, 2]"])
    def test_should_reject_malformed_config(self, tmp_path: Path, content: str) -> None:
        """Verify malformed config files raise ConfigError."""
        config = tmp_path / "bad.yaml"
        config.write_text(content)

        with pytest.raises(ConfigError):
            load_settings(config)

    def test_should_reject_missing_explicit_config(self, tmp_path: Path) -> None:
        """Verify a missing explicit config file raises ConfigError."""
        with pytest.raises(ConfigError):
            load_settings(tmp_path / "missing.yaml")


@pytest.mark.unit
class TestConnect:
    """Tests for connect()."""

    def test_should_open_sqlite_backend(self, tmp_path: Path) -> None:
        """Verify sqlite URLs open a SQLite store and executor."""
        backend = connect(f"sqlite:///{tmp_path / 'app.db'}")
        try:
            assert backend.store.dialect is SQLITE
            assert isinstance(backend.executor, SQLExecutor)
            assert backend.store.collect() == []
        finally:
            backend.close()

        assert (tmp_path / "app.db").exists()

    def test_should_open_in_memory_sqlite(self) -> None:
        """Verify the in-memory SQLite URL works."""
        backend = connect("sqlite3://:memory:")
        try:
            assert backend.store.collect() == []
        finally:
            backend.close()

    @pytest.mark.parametrize("url", [None, "", "oracle://db/app", "sqlite://"])
    def test_should_reject_unusable_urls(self, url: str | None) -> None:
        """Verify missing and unsupported URLs raise ConfigError."""
        with pytest.raises(ConfigError):
            connect(url)
