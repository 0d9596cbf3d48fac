"""
Tests for PostgresCredentialStorage against a recording connection pool.
"""
from datetime import date, datetime, timezone

import pytest
from asyncpg.exceptions import UniqueViolationError

from navigator_credentials import ConcurrencyViolation
from navigator_credentials.models import Credential, RateLimit
from navigator_credentials.storages.postgres import (
    SCHEMA_DDL,
    PostgresCredentialStorage,
    row_to_credential,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _row(**overrides):
    row = {
        "id": "cred-1",
        "organization_id": "org-1",
        "provider": "openai",
        "encrypted_secret": "00" * 16 + ":" + "11" * 16,
        "label": "Default Key",
        "is_active": True,
        "total_requests": 3,
        "total_tokens": 300,
        "total_cost_cents": 9,
        "last_used_at": NOW,
        "tokens_today": 100,
        "usage_day": date(2024, 5, 1),
        "rate_limit": '{"requests_per_minute": 10, "tokens_per_day": null}',
        "created_by": "user-1",
        "updated_by": "user-1",
        "last_rotated_at": None,
        "expires_at": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


class FakeConnection:
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result
        self.error = error

    async def _run(self, method, sql, *args):
        self.calls.append((method, sql, args))
        if self.error is not None:
            raise self.error
        return self.result

    async def fetchrow(self, sql, *args):
        return await self._run("fetchrow", sql, *args)

    async def fetch(self, sql, *args):
        return await self._run("fetch", sql, *args)

    async def execute(self, sql, *args):
        return await self._run("execute", sql, *args)


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    def acquire(self):
        pool = self

        class _Acquire:
            async def __aenter__(self):
                return pool.conn

            async def __aexit__(self, *exc):
                return False

        return _Acquire()


class TestSchema:
    """The partial unique index covers the platform scope."""

    def test_partial_unique_index(self):
        assert "CREATE UNIQUE INDEX" in SCHEMA_DDL
        assert "COALESCE(organization_id, '')" in SCHEMA_DDL
        assert "WHERE is_active" in SCHEMA_DDL

    @pytest.mark.asyncio
    async def test_create_schema(self):
        conn = FakeConnection()
        await PostgresCredentialStorage(FakePool(conn)).create_schema()
        assert conn.calls[0][1] == SCHEMA_DDL


class TestRowMapping:
    """Tests for row_to_credential."""

    def test_row_to_credential(self):
        credential = row_to_credential(_row())
        assert credential.provider.value == "openai"
        assert credential.usage.total_tokens == 300
        assert credential.usage.usage_day == date(2024, 5, 1)
        assert credential.rate_limit.requests_per_minute == 10
        assert credential.rate_limit.tokens_per_day is None

    def test_row_with_decoded_json(self):
        credential = row_to_credential(_row(rate_limit={"tokens_per_day": 5}))
        assert credential.rate_limit.tokens_per_day == 5


class TestStatements:
    """Tests for the SQL issued by the storage."""

    @pytest.mark.asyncio
    async def test_insert(self):
        conn = FakeConnection(result=_row())
        storage = PostgresCredentialStorage(FakePool(conn))
        credential = Credential(
            id="cred-1", organization_id="org-1", provider="openai",
            encrypted_secret="00" * 16 + ":" + "11" * 16,
            rate_limit=RateLimit(requests_per_minute=10),
        )
        stored = await storage.insert(credential)
        assert stored.id == "cred-1"
        _, sql, args = conn.calls[0]
        assert "INSERT INTO auth.api_credentials" in sql
        assert args[0] == "cred-1"
        assert args[2] == "openai"
        assert '"requests_per_minute":10' in args[6]

    @pytest.mark.asyncio
    async def test_insert_unique_violation(self):
        conn = FakeConnection(error=UniqueViolationError("duplicate key"))
        storage = PostgresCredentialStorage(FakePool(conn))
        credential = Credential(provider="groq", encrypted_secret="x")
        with pytest.raises(ConcurrencyViolation):
            await storage.insert(credential)

    @pytest.mark.asyncio
    async def test_increment_is_single_update(self):
        conn = FakeConnection(result=_row())
        storage = PostgresCredentialStorage(FakePool(conn))
        await storage.increment_usage("org-1", "openai", 50, 2, NOW, date(2024, 5, 1))
        assert len(conn.calls) == 1
        _, sql, args = conn.calls[0]
        assert "total_tokens = total_tokens + $3" in sql
        assert "total_requests = total_requests + 1" in sql
        assert args == ("org-1", "openai", 50, 2, NOW, date(2024, 5, 1))

    @pytest.mark.asyncio
    async def test_increment_skips_expired(self):
        conn = FakeConnection(result=_row())
        storage = PostgresCredentialStorage(FakePool(conn))
        await storage.increment_usage("org-1", "openai", 1, 0, NOW, NOW.date())
        _, sql, _ = conn.calls[0]
        assert "expires_at IS NULL OR expires_at >= $5" in sql

    @pytest.mark.asyncio
    async def test_increment_without_active(self):
        conn = FakeConnection(result=None)
        storage = PostgresCredentialStorage(FakePool(conn))
        assert await storage.increment_usage(None, "openai", 1, 0, NOW, NOW.date()) is None

    @pytest.mark.asyncio
    async def test_deactivate_scope_parses_status(self):
        conn = FakeConnection(result="UPDATE 2")
        storage = PostgresCredentialStorage(FakePool(conn))
        assert await storage.deactivate_scope(None, "groq", "user-1") == 2
        assert conn.calls[0][2] == (None, "groq", "user-1")

    @pytest.mark.asyncio
    async def test_update_builds_assignments(self):
        conn = FakeConnection(result=_row(label="Prod"))
        storage = PostgresCredentialStorage(FakePool(conn))
        updated = await storage.update(
            "cred-1", label="Prod", rate_limit=RateLimit(tokens_per_day=5),
        )
        assert updated.label == "Prod"
        _, sql, args = conn.calls[0]
        assert "label = $2" in sql
        assert "rate_limit = $3::jsonb" in sql
        assert "updated_at = NOW()" in sql
        assert args[0] == "cred-1"

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self):
        storage = PostgresCredentialStorage(FakePool(FakeConnection()))
        with pytest.raises(ValueError):
            await storage.update("cred-1", usage=None)

    @pytest.mark.asyncio
    async def test_list_all_scopes(self):
        conn = FakeConnection(result=[_row(), _row(id="cred-2", organization_id=None)])
        storage = PostgresCredentialStorage(FakePool(conn))
        records = await storage.list_credentials()
        assert [r.id for r in records] == ["cred-1", "cred-2"]
        _, sql, args = conn.calls[0]
        assert "WHERE" not in sql
        assert args == ()

    @pytest.mark.asyncio
    async def test_list_platform_scope(self):
        conn = FakeConnection(result=[])
        storage = PostgresCredentialStorage(FakePool(conn))
        await storage.list_credentials(None, "groq")
        _, sql, args = conn.calls[0]
        assert "organization_id IS NOT DISTINCT FROM $1" in sql
        assert "provider = $2" in sql
        assert args == (None, "groq")
