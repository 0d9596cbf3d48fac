"""In-process credential storage.

Records live in a dict guarded by an ``asyncio.Lock``; every mutation and
the uniqueness check run under that lock. Callers always receive copies.
"""
import asyncio
from datetime import date, datetime
from typing import Any, Optional

from ..exceptions import ConcurrencyViolation
from ..models import Credential, utcnow
from .abstract import ALL_SCOPES, UPDATABLE_FIELDS, AbstractCredentialStorage


class MemoryCredentialStorage(AbstractCredentialStorage):
    """Credential storage kept in process memory (development and tests)."""

    def __init__(self):
        self._records: dict[str, Credential] = {}
        self._lock = asyncio.Lock()

    def _active_in_scope(
        self, organization_id: Optional[str], provider: str
    ) -> Optional[Credential]:
        for record in self._records.values():
            if (
                record.is_active
                and record.organization_id == organization_id
                and record.provider.value == provider
            ):
                return record
        return None

    def _check_unique(self, credential: Credential) -> None:
        if not credential.is_active:
            return
        current = self._active_in_scope(*credential.scope)
        if current is not None and current.id != credential.id:
            raise ConcurrencyViolation(
                f"An active {credential.provider.value} credential already exists "
                f"for organization {credential.organization_id!r}"
            )

    async def insert(self, credential: Credential) -> Credential:
        async with self._lock:
            if credential.id in self._records:
                raise ConcurrencyViolation(f"Credential {credential.id} already exists")
            self._check_unique(credential)
            self._records[credential.id] = credential.model_copy(deep=True)
        return credential.model_copy(deep=True)

    async def get(self, credential_id: str) -> Optional[Credential]:
        record = self._records.get(credential_id)
        return record.model_copy(deep=True) if record else None

    async def find_active(
        self, organization_id: Optional[str], provider: str
    ) -> Optional[Credential]:
        record = self._active_in_scope(organization_id, provider)
        return record.model_copy(deep=True) if record else None

    async def list_credentials(
        self, organization_id: Any = ALL_SCOPES, provider: Optional[str] = None
    ) -> list[Credential]:
        records = [
            r for r in self._records.values()
            if (organization_id is ALL_SCOPES or r.organization_id == organization_id)
            and (provider is None or r.provider.value == provider)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        records.sort(key=lambda r: r.provider.value)
        return [r.model_copy(deep=True) for r in records]

    async def deactivate_scope(
        self,
        organization_id: Optional[str],
        provider: str,
        updated_by: Optional[str] = None,
    ) -> int:
        count = 0
        now = utcnow()
        async with self._lock:
            for record in self._records.values():
                if (
                    record.is_active
                    and record.organization_id == organization_id
                    and record.provider.value == provider
                ):
                    record.is_active = False
                    record.updated_at = now
                    if updated_by is not None:
                        record.updated_by = updated_by
                    count += 1
        return count

    async def update(self, credential_id: str, **fields: Any) -> Optional[Credential]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        async with self._lock:
            record = self._records.get(credential_id)
            if record is None:
                return None
            updated = record.model_copy(update=fields, deep=True)
            updated.updated_at = utcnow()
            self._check_unique(updated)
            self._records[credential_id] = updated
        return updated.model_copy(deep=True)

    async def increment_usage(
        self,
        organization_id: Optional[str],
        provider: str,
        tokens: int,
        cost_cents: int,
        used_at: datetime,
        day: date,
    ) -> Optional[Credential]:
        async with self._lock:
            record = self._active_in_scope(organization_id, provider)
            if record is None or record.is_expired(used_at):
                return None
            usage = record.usage
            usage.total_requests += 1
            usage.total_tokens += tokens
            usage.total_cost_cents += cost_cents
            usage.last_used_at = used_at
            if usage.usage_day == day:
                usage.tokens_today += tokens
            else:
                usage.usage_day = day
                usage.tokens_today = tokens
            return record.model_copy(deep=True)

    async def close(self) -> None:
        self._records.clear()
