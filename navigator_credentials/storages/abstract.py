"""Abstract storage for credential records.

Backends must enforce, at storage level, that at most one active
credential exists per ``(organization_id, provider)`` pair, the
platform scope (``organization_id is None``) included, and must apply
usage increments atomically.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Optional

from ..models import Credential

ALL_SCOPES: Any = object()
"""Sentinel for listing credentials of every organization and the platform."""

UPDATABLE_FIELDS = frozenset({
    "label",
    "rate_limit",
    "expires_at",
    "encrypted_secret",
    "last_rotated_at",
    "updated_by",
    "is_active",
})


class AbstractCredentialStorage(ABC):
    """Async storage interface used by the credential registry."""

    @abstractmethod
    async def insert(self, credential: Credential) -> Credential:
        """Persist a new credential.

        Raises:
            ConcurrencyViolation: If it is active and its scope already
                has an active credential.
        """

    @abstractmethod
    async def get(self, credential_id: str) -> Optional[Credential]:
        """Return a credential by id, or None."""

    @abstractmethod
    async def find_active(
        self, organization_id: Optional[str], provider: str
    ) -> Optional[Credential]:
        """Return the active credential of an exact scope, or None."""

    @abstractmethod
    async def list_credentials(
        self, organization_id: Any = ALL_SCOPES, provider: Optional[str] = None
    ) -> list[Credential]:
        """List credentials ordered by provider then newest first."""

    @abstractmethod
    async def deactivate_scope(
        self,
        organization_id: Optional[str],
        provider: str,
        updated_by: Optional[str] = None,
    ) -> int:
        """Flag every active credential of a scope as inactive.

        Returns:
            Number of credentials deactivated.
        """

    @abstractmethod
    async def update(self, credential_id: str, **fields: Any) -> Optional[Credential]:
        """Set fields (see ``UPDATABLE_FIELDS``) and bump ``updated_at``.

        Returns:
            The updated credential, or None if it does not exist.
        """

    @abstractmethod
    async def increment_usage(
        self,
        organization_id: Optional[str],
        provider: str,
        tokens: int,
        cost_cents: int,
        used_at: datetime,
        day: date,
    ) -> Optional[Credential]:
        """Atomically add one request, tokens and cost to the active
        credential of a scope and stamp ``last_used_at``. A credential
        already expired at ``used_at`` is skipped.

        ``tokens_today`` restarts from ``tokens`` when ``usage_day`` is
        not ``day``.

        Returns:
            The updated credential, or None if the scope has no active one.
        """

    async def close(self) -> None:
        """Release backend resources."""
