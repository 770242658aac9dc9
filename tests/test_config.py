import json

import pytest

from bankrec.config import CONFIG_VERSION, DEFAULT_DB_FILENAME, ConfigManager, load_settings
from bankrec.errors import ValidationError


def test_settings_come_from_the_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("BANKREC_DATA_DIR", str(tmp_path / "d"))
    monkeypatch.setenv("BANKREC_DB_PATH", str(tmp_path / "pinned.db"))
    settings = load_settings()
    assert settings.data_dir == tmp_path / "d"
    assert settings.db_path == tmp_path / "pinned.db"
    assert settings.keystore_path == tmp_path / "d" / "secure" / ".keystore"


def test_explicit_data_dir_wins(tmp_path, monkeypatch):
    monkeypatch.setenv("BANKREC_DATA_DIR", str(tmp_path / "env"))
    assert load_settings(data_dir=tmp_path / "arg").data_dir == tmp_path / "arg"


def test_default_db_path(settings):
    manager = ConfigManager(settings)
    assert manager.get_db_path() == settings.data_dir / DEFAULT_DB_FILENAME
    assert manager.has_db_path() is False


def test_set_db_path_persists(settings, tmp_path):
    target = tmp_path / "chosen" / "ledger.db"
    ConfigManager(settings).set_db_path(target)

    reloaded = ConfigManager(settings)
    assert reloaded.has_db_path()
    assert reloaded.get_db_path() == target
    assert reloaded.get_db_dir() == target.parent
    saved = json.loads(settings.config_path.read_text(encoding="utf-8"))
    assert saved == {"version": CONFIG_VERSION, "db_path": str(target)}


def test_configured_path_with_missing_directory_falls_back(settings, tmp_path):
    settings.data_dir.mkdir(parents=True)
    settings.config_path.write_text(
        json.dumps({"db_path": str(tmp_path / "gone" / "ledger.db")}), encoding="utf-8"
    )
    assert ConfigManager(settings).get_db_path() == settings.data_dir / DEFAULT_DB_FILENAME


def test_corrupt_config_uses_defaults(settings):
    settings.data_dir.mkdir(parents=True)
    settings.config_path.write_text("{not json", encoding="utf-8")
    manager = ConfigManager(settings)
    assert manager.config.version == CONFIG_VERSION
    assert manager.has_db_path() is False


def test_traversal_is_rejected(settings):
    with pytest.raises(ValidationError):
        ConfigManager(settings).set_db_path("../../etc/ledger.db")
