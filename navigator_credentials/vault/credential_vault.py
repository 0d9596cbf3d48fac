"""
CredentialVault — public API of the multi-tenant credential vault.

Wires cipher, registry, resolution, usage ledger and rotation over one
storage backend:
- ``resolve_credential(provider, organization_id)`` — org key, else platform key
- ``available_providers(organization_id)`` — providers usable right now
- ``record_usage(...)`` / ``is_rate_limited(...)`` — metering and quotas
- ``upsert_credential(...)`` / ``rotate_credential(...)`` — key management
- ``to_safe_view(credential)`` — display projection without secrets

Security Note:
    Never log plaintext or ciphertext values. Decrypted secrets are only
    returned by ``get_decrypted_secret``.
"""
import logging
from datetime import datetime
from typing import Any, Optional, Union

import orjson

from ..exceptions import ConcurrencyViolation
from ..models import Credential, Provider, RateLimit
from ..storages.abstract import ALL_SCOPES, AbstractCredentialStorage
from ..storages.memory import MemoryCredentialStorage
from .config import VaultConfig
from .crypto import CipherStore
from .registry import CredentialRegistry
from .resolution import ResolutionPolicy
from .rotation import RotationManager
from .usage import UsageLedger

logger = logging.getLogger("navigator.credentials")


class CredentialVault:
    """Multi-tenant vault of AI-provider API keys.

    Args:
        storage: Credential storage; in-process memory storage if omitted.
        config: Vault configuration; loaded from environment if omitted.
        redis: Optional Redis client for the requests-per-minute window.
    """

    def __init__(
        self,
        storage: Optional[AbstractCredentialStorage] = None,
        config: Optional[VaultConfig] = None,
        redis: Any = None,
    ):
        self._config = config or VaultConfig.from_env()
        self._storage = storage or MemoryCredentialStorage()
        self.cipher = CipherStore(self._config.master_key)
        self.registry = CredentialRegistry(self._storage, self.cipher)
        self.resolution = ResolutionPolicy(self.registry)
        self.ledger = UsageLedger(self.registry, self._config, redis=redis)
        self.rotation = RotationManager(self.registry)

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def storage(self) -> AbstractCredentialStorage:
        return self._storage

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve_credential(
        self,
        provider: Union[str, Provider],
        organization_id: Optional[str] = None,
    ) -> Optional[Credential]:
        """Credential to use for a provider call, or None if not configured."""
        return await self.resolution.resolve(provider, organization_id)

    async def require_credential(
        self,
        provider: Union[str, Provider],
        organization_id: Optional[str] = None,
    ) -> Credential:
        """Credential to use for a provider call.

        Raises:
            NoCredentialAvailable: If neither scope has a usable credential.
        """
        return await self.resolution.require(provider, organization_id)

    async def is_provider_available(
        self,
        provider: Union[str, Provider],
        organization_id: Optional[str] = None,
    ) -> bool:
        return await self.resolution.is_available(provider, organization_id)

    async def available_providers(
        self, organization_id: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """Providers usable by an organization, with the key that serves each."""
        return await self.resolution.available(organization_id)

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    async def record_usage(
        self,
        provider: Union[str, Provider],
        organization_id: Optional[str],
        tokens: int = 0,
        cost_cents: int = 0,
    ) -> Optional[Credential]:
        return await self.ledger.record_usage(
            provider, organization_id, tokens, cost_cents,
        )

    def is_rate_limited(self, credential: Credential, tokens_to_consume: int = 0) -> bool:
        return self.ledger.is_rate_limited(credential, tokens_to_consume)

    async def is_request_rate_limited(self, credential: Credential) -> bool:
        return await self.ledger.is_request_rate_limited(credential)

    async def is_throttled(self, credential: Credential, tokens_to_consume: int = 0) -> bool:
        return await self.ledger.is_throttled(credential, tokens_to_consume)

    # ------------------------------------------------------------------
    # Key management
    # ------------------------------------------------------------------

    async def upsert_credential(
        self,
        *,
        provider: Union[str, Provider, None],
        secret: Optional[str],
        organization_id: Optional[str] = None,
        label: Optional[str] = None,
        acting_user_id: Optional[str] = None,
        rate_limit: Union[RateLimit, dict, None] = None,
        expires_at: Optional[datetime] = None,
    ) -> Credential:
        """Save a new active key for a scope, retiring the previous one.

        A concurrent upsert for the same scope can win the race between
        deactivation and insert; the upsert is then retried once.

        Raises:
            ValidationError: If provider or secret are missing or invalid.
            ConcurrencyViolation: If the retry loses the race again.
        """
        kwargs = {
            "label": label,
            "acting_user_id": acting_user_id,
            "rate_limit": rate_limit,
            "expires_at": expires_at,
        }
        try:
            return await self.registry.upsert_active(
                organization_id, provider, secret, **kwargs,
            )
        except ConcurrencyViolation:
            logger.warning(
                "Concurrent upsert detected: provider=%s organization=%s, retrying",
                provider, organization_id,
            )
            return await self.registry.upsert_active(
                organization_id, provider, secret, **kwargs,
            )

    async def rotate_credential(
        self,
        credential_id: str,
        new_secret: str,
        acting_user_id: Optional[str] = None,
    ) -> Credential:
        return await self.rotation.rotate(credential_id, new_secret, acting_user_id)

    async def get_credential(self, credential_id: str) -> Credential:
        return await self.registry.get(credential_id)

    async def list_credentials(
        self,
        organization_id: Any = ALL_SCOPES,
        provider: Union[str, Provider, None] = None,
    ) -> list[Credential]:
        return await self.registry.list_credentials(organization_id, provider)

    async def update_credential(self, credential_id: str, **fields: Any) -> Credential:
        return await self.registry.update(credential_id, **fields)

    async def deactivate_credential(
        self, credential_id: str, acting_user_id: Optional[str] = None
    ) -> Credential:
        return await self.registry.deactivate(credential_id, acting_user_id)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_decrypted_secret(self, credential: Credential) -> Optional[str]:
        return self.registry.get_decrypted_secret(credential)

    def to_safe_view(self, credential: Credential) -> dict[str, Any]:
        return self.registry.to_safe_view(credential)

    def to_safe_json(self, credential: Credential) -> bytes:
        """Safe view serialized as JSON bytes."""
        return orjson.dumps(self.to_safe_view(credential))

    async def close(self) -> None:
        await self._storage.close()
