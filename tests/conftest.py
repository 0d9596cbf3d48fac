"""Shared fixtures for the credential vault tests."""
import base64

import pytest

from navigator_credentials.storages import MemoryCredentialStorage
from navigator_credentials.vault import CipherStore, CredentialVault, VaultConfig

TEST_KEY = bytes(range(32))
OTHER_KEY = bytes(range(32, 64))


class FakeRedis:
    """Minimal async Redis stand-in for counters."""

    def __init__(self):
        self.store: dict[str, int] = {}
        self.ttl: dict[str, int] = {}

    async def incr(self, key):
        self.store[key] = self.store.get(key, 0) + 1
        return self.store[key]

    async def expire(self, key, seconds):
        self.ttl[key] = seconds
        return True

    async def mget(self, *keys):
        return [self.store.get(k) for k in keys]


@pytest.fixture
def master_key_b64():
    return base64.b64encode(TEST_KEY).decode("ascii")


@pytest.fixture
def config():
    return VaultConfig(master_key=TEST_KEY)


@pytest.fixture
def lifetime_config():
    return VaultConfig(master_key=TEST_KEY, token_quota_window="lifetime")


@pytest.fixture
def cipher():
    return CipherStore(TEST_KEY)


@pytest.fixture
def storage():
    return MemoryCredentialStorage()


@pytest.fixture
def vault(storage, config):
    return CredentialVault(storage=storage, config=config)


@pytest.fixture
def fake_redis():
    return FakeRedis()
