"""Shared pytest configuration and fixtures."""
import logging

import pytest

from movr.core.config import STORAGE_ENV, ConfigStore
from movr.core.wallet import Signer, WalletManager
from tests.fakes import FakeRegistry, FakeStorage
from tests.fixtures import ALICE_KEY, write_package


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Keep the developer's config and Pinata credentials out of tests."""
    for env_name in STORAGE_ENV.values():
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.setenv("MOVR_CONFIG", str(tmp_path / "default-config.json"))


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo configure_logging so caplog sees movr records again."""
    yield
    logger = logging.getLogger("movr")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def config(tmp_path):
    return ConfigStore(tmp_path / "config.json").load_or_init()


@pytest.fixture
def wallets(config):
    return WalletManager(config)


@pytest.fixture
def alice(wallets):
    """Default wallet 'alice' with a known key; returns its Signer."""
    wallets.import_key("alice", ALICE_KEY)
    return Signer.from_private_key(ALICE_KEY)


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def package_dir(tmp_path):
    return write_package(tmp_path / "src")
