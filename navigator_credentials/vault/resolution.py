"""
ResolutionPolicy — which credential to use for an outbound provider call.

Lookup order (first usable match wins):
    1. active credential of the organization, if one is given
    2. active platform-global credential (``organization_id is None``)

Expired credentials are treated as absent.
"""
import logging
from typing import Optional, Union

from ..exceptions import NoCredentialAvailable, ValidationError
from ..models import Credential, Provider
from .registry import CredentialRegistry, validate_provider

logger = logging.getLogger("navigator.credentials")


class ResolutionPolicy:
    """Organization-first, platform-fallback credential lookup."""

    def __init__(self, registry: CredentialRegistry):
        self._registry = registry

    async def _usable(
        self, organization_id: Optional[str], provider: str
    ) -> Optional[Credential]:
        credential = await self._registry.storage.find_active(organization_id, provider)
        if credential is None:
            return None
        if credential.is_expired():
            logger.debug(
                "Skipping expired credential id=%s provider=%s organization=%s",
                credential.id, provider, organization_id,
            )
            return None
        return credential

    async def resolve(
        self,
        provider: Union[str, Provider],
        organization_id: Optional[str] = None,
    ) -> Optional[Credential]:
        """Find the credential to use right now, or None if there is none.

        Raises:
            ValidationError: If the provider is not supported.
        """
        provider = validate_provider(provider).value
        if organization_id:
            credential = await self._usable(organization_id, provider)
            if credential is not None:
                return credential
        credential = await self._usable(None, provider)
        if credential is None:
            logger.info(
                "No credential available: provider=%s organization=%s",
                provider, organization_id,
            )
        return credential

    async def require(
        self,
        provider: Union[str, Provider],
        organization_id: Optional[str] = None,
    ) -> Credential:
        """Like ``resolve`` but raises when nothing is usable.

        Raises:
            NoCredentialAvailable: If neither scope has a usable credential.
        """
        credential = await self.resolve(provider, organization_id)
        if credential is None:
            raise NoCredentialAvailable(validate_provider(provider).value, organization_id)
        return credential

    async def is_available(
        self,
        provider: Union[str, Provider],
        organization_id: Optional[str] = None,
    ) -> bool:
        """True if a call to ``provider`` would find a usable credential.

        Unsupported provider names are reported as unavailable.
        """
        try:
            provider = validate_provider(provider).value
        except ValidationError:
            return False
        return await self.resolve(provider, organization_id) is not None

    async def available(self, organization_id: Optional[str] = None) -> list[dict]:
        """Providers an organization can call right now.

        Each entry tells whether the organization's own key or the
        platform key would be used, with its label and usage counters.
        """
        providers = []
        for member in Provider:
            credential = await self.resolve(member, organization_id)
            if credential is None:
                continue
            providers.append({
                "provider": member.value,
                "is_org_key": not credential.is_platform,
                "label": credential.label,
                "usage": credential.usage.model_dump(),
            })
        return providers
