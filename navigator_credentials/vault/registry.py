"""
CredentialRegistry — record lifecycle and invariants.

Secrets enter the registry only through ``CipherStore.encrypt``; a
credential is never handed to storage with a plaintext secret.

Security Note:
    Never log plaintext or ciphertext values. Only log ids, providers
    and organization ids.
"""
import logging
from datetime import datetime
from typing import Any, Optional, Union

from ..exceptions import CredentialNotFound, ValidationError
from ..models import DEFAULT_LABEL, Credential, Provider, RateLimit
from ..storages.abstract import ALL_SCOPES, AbstractCredentialStorage
from .crypto import CipherStore

logger = logging.getLogger("navigator.credentials")

MASK = "***"
PREVIEW_CHARS = 4

UNSET: Any = object()
"""Default of optional update arguments; None clears the field instead."""


def validate_provider(provider: Union[str, Provider, None]) -> Provider:
    """Return the Provider member for ``provider``.

    Raises:
        ValidationError: If the provider is missing or not supported.
    """
    if not provider:
        raise ValidationError("Missing required field: provider")
    try:
        return Provider(provider)
    except ValueError:
        raise ValidationError(
            f"Invalid provider '{provider}'. Must be one of: "
            f"{', '.join(Provider.values())}",
            reason_code="invalid_provider",
        ) from None


def validate_rate_limit(rate_limit: Union[RateLimit, dict, None]) -> RateLimit:
    if rate_limit is None:
        return RateLimit()
    if isinstance(rate_limit, RateLimit):
        return rate_limit
    try:
        return RateLimit(**rate_limit)
    except (TypeError, ValueError) as err:
        raise ValidationError(
            f"Invalid rate limit: {err}", reason_code="invalid_rate_limit"
        ) from err


class CredentialRegistry:
    """CRUD and invariant enforcement over credential records.

    Args:
        storage: Credential storage backend.
        cipher: Cipher used to seal secrets before they are persisted.
    """

    def __init__(self, storage: AbstractCredentialStorage, cipher: CipherStore):
        self._storage = storage
        self._cipher = cipher

    @property
    def storage(self) -> AbstractCredentialStorage:
        return self._storage

    @property
    def cipher(self) -> CipherStore:
        return self._cipher

    def seal(self, secret: Optional[str]) -> str:
        """Encrypt a secret for storage.

        Raises:
            ValidationError: If the secret is missing.
        """
        if secret is None or not str(secret).strip():
            raise ValidationError(
                "Missing required field: secret", reason_code="missing_secret"
            )
        return self._cipher.encrypt(str(secret).strip())

    async def create(
        self,
        *,
        provider: Union[str, Provider, None],
        secret: Optional[str],
        organization_id: Optional[str] = None,
        label: Optional[str] = None,
        is_active: bool = True,
        rate_limit: Union[RateLimit, dict, None] = None,
        expires_at: Optional[datetime] = None,
        acting_user_id: Optional[str] = None,
    ) -> Credential:
        """Validate, encrypt and persist a new credential.

        Raises:
            ValidationError: If provider or secret are missing or invalid.
            ConcurrencyViolation: If an active credential already exists
                for the same scope.
        """
        credential = Credential(
            organization_id=organization_id,
            provider=validate_provider(provider),
            encrypted_secret=self.seal(secret),
            label=label or DEFAULT_LABEL,
            is_active=is_active,
            rate_limit=validate_rate_limit(rate_limit),
            expires_at=expires_at,
            created_by=acting_user_id,
            updated_by=acting_user_id,
        )
        credential = await self._storage.insert(credential)
        logger.info(
            "Credential created: id=%s provider=%s organization=%s",
            credential.id, credential.provider.value, credential.organization_id,
        )
        return credential

    async def upsert_active(
        self,
        organization_id: Optional[str],
        provider: Union[str, Provider, None],
        secret: Optional[str],
        label: Optional[str] = None,
        acting_user_id: Optional[str] = None,
        **kwargs: Any,
    ) -> Credential:
        """Replace the active credential of a scope with a new one.

        Existing active credentials are deactivated (kept for history)
        before the new one is inserted, so a failure in between leaves
        the scope with no active credential rather than two.

        Raises:
            ValidationError: If provider or secret are missing or invalid.
            ConcurrencyViolation: If a concurrent upsert inserted first.
        """
        member = validate_provider(provider)
        encrypted = self.seal(secret)
        deactivated = await self._storage.deactivate_scope(
            organization_id, member.value, acting_user_id,
        )
        if deactivated:
            logger.debug(
                "Deactivated %d credential(s): provider=%s organization=%s",
                deactivated, member.value, organization_id,
            )
        return await self.create(
            provider=member,
            secret=encrypted,
            organization_id=organization_id,
            label=label,
            acting_user_id=acting_user_id,
            **kwargs,
        )

    async def get(self, credential_id: str) -> Credential:
        """Return a credential by id.

        Raises:
            CredentialNotFound: If it does not exist.
        """
        credential = await self._storage.get(credential_id)
        if credential is None:
            raise CredentialNotFound(f"Credential {credential_id} not found")
        return credential

    async def list_credentials(
        self,
        organization_id: Any = ALL_SCOPES,
        provider: Union[str, Provider, None] = None,
    ) -> list[Credential]:
        """List credentials of one scope (or every scope), history included."""
        if provider is not None:
            provider = validate_provider(provider).value
        return await self._storage.list_credentials(organization_id, provider)

    async def update(
        self,
        credential_id: str,
        *,
        label: Optional[str] = None,
        rate_limit: Union[RateLimit, dict, None] = UNSET,
        expires_at: Optional[datetime] = UNSET,
        acting_user_id: Optional[str] = None,
    ) -> Credential:
        """Edit credential metadata; the secret is only changed by rotation.

        Omitted arguments are left unchanged. Passing None as
        ``rate_limit`` removes every limit, and as ``expires_at`` makes
        the credential non-expiring.

        Raises:
            CredentialNotFound: If it does not exist.
            ValidationError: If the rate limit is invalid.
        """
        fields: dict[str, Any] = {}
        if acting_user_id is not None:
            fields["updated_by"] = acting_user_id
        if label:
            fields["label"] = label.strip() or DEFAULT_LABEL
        if rate_limit is not UNSET:
            fields["rate_limit"] = validate_rate_limit(rate_limit)
        if expires_at is not UNSET:
            fields["expires_at"] = expires_at
        credential = await self._storage.update(credential_id, **fields)
        if credential is None:
            raise CredentialNotFound(f"Credential {credential_id} not found")
        return credential

    async def deactivate(
        self, credential_id: str, acting_user_id: Optional[str] = None
    ) -> Credential:
        """Soft-delete a credential: it stays stored but inactive.

        Raises:
            CredentialNotFound: If it does not exist.
        """
        fields: dict[str, Any] = {"is_active": False}
        if acting_user_id is not None:
            fields["updated_by"] = acting_user_id
        credential = await self._storage.update(credential_id, **fields)
        if credential is None:
            raise CredentialNotFound(f"Credential {credential_id} not found")
        logger.info(
            "Credential deactivated: id=%s provider=%s organization=%s",
            credential.id, credential.provider.value, credential.organization_id,
        )
        return credential

    def get_decrypted_secret(self, credential: Credential) -> Optional[str]:
        """Plaintext secret, or None when it cannot be decrypted."""
        return self._cipher.decrypt(credential.encrypted_secret)

    @staticmethod
    def is_expired(credential: Credential) -> bool:
        return credential.is_expired()

    def to_safe_view(self, credential: Credential) -> dict[str, Any]:
        """Project a credential for display.

        Never includes the envelope or the plaintext, only a masked
        preview of the last four characters of the secret.
        """
        secret = self.get_decrypted_secret(credential)
        preview = None
        if secret:
            # short secrets would be shown whole
            preview = MASK + secret[-PREVIEW_CHARS:] if len(secret) > PREVIEW_CHARS else MASK
        return {
            "id": credential.id,
            "organization_id": credential.organization_id,
            "provider": credential.provider.value,
            "label": credential.label,
            "is_active": credential.is_active,
            "key_preview": preview,
            "usage": credential.usage.model_dump(),
            "rate_limit": credential.rate_limit.model_dump(),
            "created_by": credential.created_by,
            "updated_by": credential.updated_by,
            "created_at": credential.created_at,
            "updated_at": credential.updated_at,
            "last_rotated_at": credential.last_rotated_at,
            "expires_at": credential.expires_at,
            "is_expired": credential.is_expired(),
        }
