"""Shared fixtures.

Every file the code touches (database, keystore, config, backups) lives under
the test's ``tmp_path``; ``BANKREC_*`` variables from the developer's shell are
cleared so the environment cannot leak into a run.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from bankrec.app import BankRecApp
from bankrec.backup import BackupCodec
from bankrec.config import ConfigManager, Settings
from bankrec.key_manager import SecretManager
from bankrec.store import EncryptedStore
from tests.helpers.ledger import SECRET
from tests.helpers.secure_store import InMemorySecureStore


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("BANKREC_DATA_DIR", "BANKREC_DB_PATH", "BANKREC_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(data_dir=tmp_path / "data")


@pytest.fixture
def store(tmp_path: Path) -> Iterator[EncryptedStore]:
    s = EncryptedStore.open(tmp_path / "store.db", SECRET)
    yield s
    s.close()


@pytest.fixture
def user_id(store: EncryptedStore) -> int:
    return store.create_user("alex@example.com", "Alex", "Doe")


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def secure_store() -> InMemorySecureStore:
    return InMemorySecureStore()


@pytest.fixture
def app_ctx(
    settings: Settings, secure_store: InMemorySecureStore, sleeps: SleepRecorder
) -> Iterator[BankRecApp]:
    ctx = BankRecApp(
        settings,
        SecretManager.default(settings, secure_store=secure_store),
        ConfigManager(settings),
        BackupCodec(),
        sleep=sleeps,
    )
    yield ctx
    ctx.close()
