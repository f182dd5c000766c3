"""Configuration loading: YAML files, environment overrides, validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from NexusSDE.DatasetSync.errors import ConfigError, UserConfigError
from NexusSDE.DatasetSync.settings import (
    CLIENT_VERSION,
    build_config,
    get_default_config,
    load_config,
)


def test_defaults() -> None:
    config = get_default_config()

    assert config.remote.record_type == "SDE_Record"
    assert config.remote.client_version == CLIENT_VERSION
    assert config.remote.eligibility == "exact"
    assert config.checker.cooldown_seconds == 60.0
    assert config.storage.local_root == config.storage.data_root / "local"
    assert config.storage.data_root.is_absolute()


def test_yaml_file_is_loaded(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "remote:\n"
        "  base_url: https://records.test/api/\n"
        "  eligibility: at_most\n"
        "storage:\n"
        f"  data_root: {tmp_path / 'data'}\n"
        "checker:\n"
        "  cooldown_seconds: 5\n",
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.remote.base_url == "https://records.test/api"
    assert config.remote.eligibility == "at_most"
    assert config.storage.staging_dir == (tmp_path / "data").resolve() / "staging"
    assert config.checker.cooldown_seconds == 5


def test_empty_yaml_file_yields_defaults(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")

    assert load_config(path).remote.record_type == "SDE_Record"


def test_environment_overrides_win(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SDESYNC_BASE_URL", "https://override.test")
    monkeypatch.setenv("SDESYNC_DATA_ROOT", str(tmp_path / "env-data"))
    monkeypatch.setenv("SDESYNC_COOLDOWN_SECONDS", "12.5")
    monkeypatch.setenv("SDESYNC_LOG_LEVEL", "debug")
    monkeypatch.setenv("SDESYNC_API_TOKEN", "token-value")

    config = build_config({"remote": {"base_url": "https://file.test"}})

    assert config.remote.base_url == "https://override.test"
    assert config.storage.data_root == (tmp_path / "env-data").resolve()
    assert config.checker.cooldown_seconds == 12.5
    assert config.logging.level == "DEBUG"
    assert config.remote.api_token == "token-value"


@pytest.mark.parametrize(
    "raw",
    [
        {"remote": {"base_url": "ftp://records.test"}},
        {"remote": {"eligibility": "newest"}},
        {"remote": {"unknown": 1}},
        {"checker": {"cooldown_seconds": -1}},
        {"checker": {"state_file": "../escape.json"}},
        {"logging": {"level": "chatty"}},
    ],
)
def test_invalid_values_raise_user_config_error(raw: dict) -> None:
    with pytest.raises(UserConfigError):
        build_config(raw)


def test_missing_file_raises_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")


def test_non_mapping_yaml_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(UserConfigError):
        load_config(path)


def test_config_hash_ignores_the_token() -> None:
    first = build_config({"remote": {"api_token": "one"}})
    second = build_config({"remote": {"api_token": "two"}})
    third = build_config({"remote": {"record_type": "Other"}})

    assert first.config_hash() == second.config_hash()
    assert first.config_hash() != third.config_hash()
