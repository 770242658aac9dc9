"""Runtime settings and the persisted ``config.json``.

``load_settings()`` reads environment variables (entrypoints load a local
``.env`` first with ``python-dotenv``):

- ``BANKREC_DATA_DIR``: app-data directory, default ``~/.bankrec``. Holds
  ``config.json``, the fallback keystore and temporary export copies.
- ``BANKREC_DB_PATH``: explicit database path; wins over ``config.json``.
- ``BANKREC_LOG_LEVEL``: read by :mod:`bankrec.logging_setup`.

``ConfigManager`` owns ``config.json``, which remembers a user-chosen database
location across runs.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError

from .errors import ValidationError
from .logging_setup import get_logger
from .validation import validate_file_path

CONFIG_VERSION = "1.0.0"
DEFAULT_DB_FILENAME = "bankrec.db"

_logger = get_logger("bankrec.config")


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    data_dir: Path
    db_path: Path | None = None

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def keystore_path(self) -> Path:
        return self.data_dir / "secure" / ".keystore"


def load_settings(*, data_dir: str | os.PathLike[str] | None = None) -> Settings:
    raw_dir = data_dir or os.getenv("BANKREC_DATA_DIR") or Path.home() / ".bankrec"
    raw_db = os.getenv("BANKREC_DB_PATH")
    return Settings(
        data_dir=Path(raw_dir).expanduser(),
        db_path=Path(raw_db).expanduser() if raw_db else None,
    )


class AppConfig(BaseModel):
    """Shape of ``config.json``."""

    model_config = ConfigDict(extra="ignore")

    version: str = CONFIG_VERSION
    db_path: str | None = None


class ConfigManager:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.config = self._load()

    def _load(self) -> AppConfig:
        path = self.settings.config_path
        if not path.exists():
            return AppConfig()
        try:
            return AppConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, PydanticValidationError) as exc:
            _logger.error("could not read %s, using defaults: %s", path, exc)
            return AppConfig()

    def _save(self) -> None:
        path = self.settings.config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(self.config.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def get_db_path(self) -> Path:
        if self.settings.db_path is not None:
            return self.settings.db_path
        if self.config.db_path:
            configured = Path(self.config.db_path)
            if configured.parent.is_dir():
                return configured
        return self.settings.data_dir / DEFAULT_DB_FILENAME

    def get_db_dir(self) -> Path:
        return self.get_db_path().parent

    def has_db_path(self) -> bool:
        return bool(self.config.db_path)

    def set_db_path(self, db_path: str | os.PathLike[str]) -> Path:
        """Persist a new database location; the parent directory must be writable."""

        path = Path(validate_file_path(db_path)).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ValidationError(f"Cannot create directory: {path.parent}") from exc
        if not os.access(path.parent, os.W_OK):
            raise ValidationError(f"Directory is not writable: {path.parent}")
        self.config = self.config.model_copy(update={"db_path": str(path)})
        self._save()
        return path


__all__ = [
    "AppConfig",
    "CONFIG_VERSION",
    "ConfigManager",
    "DEFAULT_DB_FILENAME",
    "Settings",
    "load_settings",
]
