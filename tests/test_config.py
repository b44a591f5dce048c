from pathlib import Path

import pytest

from infoflow import config as config_module
from infoflow.config import (
    ENV_APP_KEY,
    ENV_APP_SECRET,
    ConfigError,
    apply_env_overrides,
    load_config,
)


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ENV_APP_KEY, raising=False)
    monkeypatch.delenv(ENV_APP_SECRET, raising=False)


class TestLoadConfig:
    def test_load_from_explicit_path(self, tmp_path: Path) -> None:
        config_file = tmp_path / "infoflow.toml"
        config_file.write_text('app_key = "key123"')

        config, path = load_config(config_file)

        assert config["app_key"] == "key123"
        assert path == config_file

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Missing config file"):
            load_config(tmp_path / "nonexistent.toml")

    def test_malformed_toml_raises(self, tmp_path: Path) -> None:
        bad_file = tmp_path / "bad.toml"
        bad_file.write_text("invalid = [unclosed")

        with pytest.raises(ConfigError, match="Malformed TOML"):
            load_config(bad_file)

    def test_non_utf8_file_is_malformed(self, tmp_path: Path) -> None:
        bad_file = tmp_path / "latin1.toml"
        bad_file.write_bytes('robot_name = "caf\xe9"'.encode("latin-1"))

        with pytest.raises(ConfigError, match="Malformed TOML"):
            load_config(bad_file)

    def test_path_exists_but_is_directory(self, tmp_path: Path) -> None:
        dir_path = tmp_path / "config_dir"
        dir_path.mkdir()

        with pytest.raises(ConfigError, match="Failed to read config file"):
            load_config(dir_path)

    def test_local_config_is_discovered(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        local = tmp_path / ".infoflow" / "infoflow.toml"
        local.parent.mkdir()
        local.write_text('robot_name = "MyBot"')
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            config_module, "HOME_CONFIG_PATH", tmp_path / "home" / "infoflow.toml"
        )

        config, path = load_config()

        assert config == {"robot_name": "MyBot"}
        assert path == local

    def test_no_config_anywhere(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            config_module, "HOME_CONFIG_PATH", tmp_path / "home" / "infoflow.toml"
        )

        with pytest.raises(ConfigError, match="Missing infoflow config"):
            load_config()


class TestEnvOverrides:
    def test_env_wins_over_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config_file = tmp_path / "infoflow.toml"
        config_file.write_text('app_key = "file-key"\napp_secret = "file-secret"')
        monkeypatch.setenv(ENV_APP_KEY, " env-key ")
        monkeypatch.setenv(ENV_APP_SECRET, "env-secret")

        config, _ = load_config(config_file)

        assert config["app_key"] == "env-key"
        assert config["app_secret"] == "env-secret"

    def test_blank_env_is_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_APP_KEY, "   ")
        assert apply_env_overrides({"app_key": "file-key"}) == {"app_key": "file-key"}

    def test_input_is_not_mutated(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_APP_SECRET, "env-secret")
        original = {"app_key": "k"}
        merged = apply_env_overrides(original)
        assert original == {"app_key": "k"}
        assert merged == {"app_key": "k", "app_secret": "env-secret"}
