"""Tests for the layered YAML configuration and preference helpers."""
from pathlib import Path

import pytest
import yaml

from photoindex.utils.config import (
    AppConfig,
    add_image_directories,
    get_image_directories,
    get_meta_language,
    set_index_path,
    set_meta_language,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in ("PHOTOINDEX_DB_PATH", "PHOTOINDEX_LANGUAGE", "PHOTOINDEX_USER_SETTINGS_PATH"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def system_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "index": {
            "database_path": str(tmp_path / "system.sqlite3"),
            "language": "English",
            "batch_size": 100,
        }
    }), encoding="utf-8")
    return path


@pytest.fixture
def user_path(tmp_path):
    return tmp_path / "user" / "user-settings.yaml"


def test_system_defaults(system_config, user_path):
    cfg = AppConfig(system_config, user_path)

    assert cfg.get("index.batch_size") == 100
    assert cfg.get("index.missing", "fallback") == "fallback"
    assert get_meta_language(cfg) == "English"
    assert not user_path.exists()


def test_missing_system_config_uses_model_defaults(tmp_path, user_path):
    settings = AppConfig(tmp_path / "absent.yaml", user_path).to_settings()
    assert settings.language == "English"
    assert settings.batch_size == 500


def test_user_settings_override_system(system_config, user_path):
    user_path.parent.mkdir(parents=True)
    user_path.write_text(yaml.safe_dump({"index": {"batch_size": 7}}), encoding="utf-8")

    cfg = AppConfig(system_config, user_path)
    assert cfg.get("index.batch_size") == 7
    assert cfg.section("index")["language"] == "English"


def test_env_overrides_win(system_config, user_path, monkeypatch, tmp_path):
    user_path.parent.mkdir(parents=True)
    user_path.write_text(yaml.safe_dump({"index": {"language": "French"}}), encoding="utf-8")
    monkeypatch.setenv("PHOTOINDEX_LANGUAGE", "dutch")
    monkeypatch.setenv("PHOTOINDEX_DB_PATH", str(tmp_path / "env.sqlite3"))

    settings = AppConfig(system_config, user_path).to_settings()
    assert settings.language == "Dutch"
    assert settings.database_path == tmp_path / "env.sqlite3"


def test_corrupt_user_settings_are_ignored(system_config, user_path):
    user_path.parent.mkdir(parents=True)
    user_path.write_text("index: [unclosed", encoding="utf-8")

    assert AppConfig(system_config, user_path).get("index.batch_size") == 100


def test_add_image_directories_dedupes(system_config, user_path, tmp_path):
    cfg = AppConfig(system_config, user_path)
    a = tmp_path / "a"

    add_image_directories(cfg, [str(a), str(tmp_path / "b")])
    final = add_image_directories(cfg, [str(a)])

    assert final == [str(a.absolute()), str((tmp_path / "b").absolute())]
    reloaded = AppConfig(system_config, user_path)
    assert get_image_directories(reloaded) == final


def test_set_meta_language(system_config, user_path):
    cfg = AppConfig(system_config, user_path)

    assert set_meta_language(cfg, "german") == "German"
    assert AppConfig(system_config, user_path).get("index.language") == "German"
    with pytest.raises(ValueError):
        set_meta_language(cfg, "Klingon")


def test_set_index_path_creates_parent(system_config, user_path, tmp_path):
    cfg = AppConfig(system_config, user_path)
    target = tmp_path / "deep" / "dir" / "index.sqlite3"

    assert set_index_path(cfg, str(target)) == target
    assert target.parent.is_dir()
    assert cfg.to_settings().database_path == target


def test_to_settings_overrides(system_config, user_path, tmp_path):
    cfg = AppConfig(system_config, user_path)
    settings = cfg.to_settings(database_path=str(tmp_path / "cli.sqlite3"), language=None)

    assert settings.database_path == Path(tmp_path / "cli.sqlite3")
    assert settings.language == "English"
    assert settings.batch_size == 100
