"""
PostgreSQL credential storage over an asyncpg connection pool.

The one-active-credential rule is a partial unique index on
``(COALESCE(organization_id, ''), provider) WHERE is_active``, so the
platform scope (NULL organization) is constrained too. Usage counters
are incremented in a single UPDATE statement.
"""
import logging
from datetime import date, datetime
from typing import Any, Optional
from collections.abc import Mapping

import orjson
from asyncpg.exceptions import UniqueViolationError

from ..exceptions import ConcurrencyViolation
from ..models import Credential, CredentialUsage, RateLimit, Provider
from .abstract import ALL_SCOPES, UPDATABLE_FIELDS, AbstractCredentialStorage

logger = logging.getLogger("navigator.credentials")

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_PROVIDERS = ", ".join(f"'{p}'" for p in Provider.values())

SCHEMA_DDL = f"""
CREATE SCHEMA IF NOT EXISTS auth;
CREATE TABLE IF NOT EXISTS auth.api_credentials (
    id VARCHAR(64) PRIMARY KEY,
    organization_id VARCHAR(64),
    provider VARCHAR(32) NOT NULL CHECK (provider IN ({_PROVIDERS})),
    encrypted_secret TEXT NOT NULL,
    label VARCHAR(255) NOT NULL DEFAULT 'Default Key',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    total_requests BIGINT NOT NULL DEFAULT 0,
    total_tokens BIGINT NOT NULL DEFAULT 0,
    total_cost_cents BIGINT NOT NULL DEFAULT 0,
    last_used_at TIMESTAMPTZ,
    tokens_today BIGINT NOT NULL DEFAULT 0,
    usage_day DATE,
    rate_limit JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    created_by VARCHAR(64),
    updated_by VARCHAR(64),
    last_rotated_at TIMESTAMPTZ,
    expires_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS unique_active_credential_per_org_provider
    ON auth.api_credentials (COALESCE(organization_id, ''), provider)
    WHERE is_active;
CREATE INDEX IF NOT EXISTS api_credentials_provider_active
    ON auth.api_credentials (provider, is_active);
"""

_INSERT_CREDENTIAL = """
INSERT INTO auth.api_credentials (
    id, organization_id, provider, encrypted_secret, label, is_active,
    rate_limit, created_by, updated_by, expires_at, created_at, updated_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10, $11, $12)
RETURNING *
"""

_SELECT_BY_ID = """
SELECT * FROM auth.api_credentials WHERE id = $1
"""

_SELECT_ACTIVE = """
SELECT * FROM auth.api_credentials
WHERE organization_id IS NOT DISTINCT FROM $1 AND provider = $2 AND is_active
"""

_DEACTIVATE_SCOPE = """
UPDATE auth.api_credentials
SET is_active = FALSE, updated_by = COALESCE($3, updated_by), updated_at = NOW()
WHERE organization_id IS NOT DISTINCT FROM $1 AND provider = $2 AND is_active
"""

_INCREMENT_USAGE = """
UPDATE auth.api_credentials
SET total_requests = total_requests + 1,
    total_tokens = total_tokens + $3,
    total_cost_cents = total_cost_cents + $4,
    last_used_at = $5,
    tokens_today = CASE WHEN usage_day = $6 THEN tokens_today + $3 ELSE $3 END,
    usage_day = $6
WHERE organization_id IS NOT DISTINCT FROM $1 AND provider = $2 AND is_active
    AND (expires_at IS NULL OR expires_at >= $5)
RETURNING *
"""


def _dump_rate_limit(rate_limit: RateLimit) -> str:
    return orjson.dumps(rate_limit.model_dump()).decode("utf-8")


def row_to_credential(row: Mapping[str, Any]) -> Credential:
    """Build a Credential from an ``auth.api_credentials`` row."""
    rate_limit = row["rate_limit"] or {}
    if isinstance(rate_limit, (str, bytes)):
        rate_limit = orjson.loads(rate_limit)
    return Credential(
        id=row["id"],
        organization_id=row["organization_id"],
        provider=row["provider"],
        encrypted_secret=row["encrypted_secret"],
        label=row["label"],
        is_active=row["is_active"],
        usage=CredentialUsage(
            total_requests=row["total_requests"],
            total_tokens=row["total_tokens"],
            total_cost_cents=row["total_cost_cents"],
            last_used_at=row["last_used_at"],
            tokens_today=row["tokens_today"],
            usage_day=row["usage_day"],
        ),
        rate_limit=RateLimit(**rate_limit),
        created_by=row["created_by"],
        updated_by=row["updated_by"],
        last_rotated_at=row["last_rotated_at"],
        expires_at=row["expires_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresCredentialStorage(AbstractCredentialStorage):
    """Credential storage on PostgreSQL.

    Args:
        db_pool: asyncpg-compatible connection pool.
    """

    def __init__(self, db_pool: Any):
        self._db = db_pool

    async def create_schema(self) -> None:
        """Create the credentials table and its indexes if missing."""
        async with self._db.acquire() as conn:
            await conn.execute(SCHEMA_DDL)
        logger.info("Credential storage schema is ready")

    async def insert(self, credential: Credential) -> Credential:
        async with self._db.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    _INSERT_CREDENTIAL,
                    credential.id,
                    credential.organization_id,
                    credential.provider.value,
                    credential.encrypted_secret,
                    credential.label,
                    credential.is_active,
                    _dump_rate_limit(credential.rate_limit),
                    credential.created_by,
                    credential.updated_by,
                    credential.expires_at,
                    credential.created_at,
                    credential.updated_at,
                )
            except UniqueViolationError as err:
                raise ConcurrencyViolation(
                    f"An active {credential.provider.value} credential already exists "
                    f"for organization {credential.organization_id!r}"
                ) from err
        return row_to_credential(row)

    async def get(self, credential_id: str) -> Optional[Credential]:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(_SELECT_BY_ID, credential_id)
        return row_to_credential(row) if row else None

    async def find_active(
        self, organization_id: Optional[str], provider: str
    ) -> Optional[Credential]:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(_SELECT_ACTIVE, organization_id, provider)
        return row_to_credential(row) if row else None

    async def list_credentials(
        self, organization_id: Any = ALL_SCOPES, provider: Optional[str] = None
    ) -> list[Credential]:
        clauses = []
        args: list = []
        if organization_id is not ALL_SCOPES:
            args.append(organization_id)
            clauses.append(f"organization_id IS NOT DISTINCT FROM ${len(args)}")
        if provider is not None:
            args.append(provider)
            clauses.append(f"provider = ${len(args)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = (
            f"SELECT * FROM auth.api_credentials {where} "
            "ORDER BY provider, created_at DESC"
        )
        async with self._db.acquire() as conn:
            rows = await conn.fetch(sql, *args)
        return [row_to_credential(row) for row in rows]

    async def deactivate_scope(
        self,
        organization_id: Optional[str],
        provider: str,
        updated_by: Optional[str] = None,
    ) -> int:
        async with self._db.acquire() as conn:
            status = await conn.execute(
                _DEACTIVATE_SCOPE, organization_id, provider, updated_by,
            )
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        return int(status.split()[-1]) if status else 0

    async def update(self, credential_id: str, **fields: Any) -> Optional[Credential]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        assignments = []
        args: list = [credential_id]
        for name, value in fields.items():
            if name == "rate_limit":
                args.append(_dump_rate_limit(value))
                assignments.append(f"rate_limit = ${len(args)}::jsonb")
            else:
                args.append(value)
                assignments.append(f"{name} = ${len(args)}")
        assignments.append("updated_at = NOW()")
        sql = (
            f"UPDATE auth.api_credentials SET {', '.join(assignments)} "
            "WHERE id = $1 RETURNING *"
        )
        async with self._db.acquire() as conn:
            try:
                row = await conn.fetchrow(sql, *args)
            except UniqueViolationError as err:
                raise ConcurrencyViolation(
                    f"Credential {credential_id} conflicts with the active credential "
                    "of its scope"
                ) from err
        return row_to_credential(row) if row else None

    async def increment_usage(
        self,
        organization_id: Optional[str],
        provider: str,
        tokens: int,
        cost_cents: int,
        used_at: datetime,
        day: date,
    ) -> Optional[Credential]:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                _INCREMENT_USAGE,
                organization_id, provider, tokens, cost_cents, used_at, day,
            )
        return row_to_credential(row) if row else None
