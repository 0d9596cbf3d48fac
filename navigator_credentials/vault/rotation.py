"""
RotationManager — replace a credential's secret, keeping its history.

Rotation only touches the envelope, ``last_rotated_at`` and
``updated_by``; activity flag, usage and ``created_by`` are unchanged.

Security Note:
    Plaintext exists in memory only while the new secret is encrypted.
    Never log plaintext or ciphertext values.
"""
import logging
from typing import Optional, Union

from ..exceptions import CredentialNotFound
from ..models import Credential, utcnow
from .registry import CredentialRegistry

logger = logging.getLogger("navigator.credentials")


class RotationManager:
    """Rotates credential secrets through the registry's cipher."""

    def __init__(self, registry: CredentialRegistry):
        self._registry = registry

    async def rotate(
        self,
        credential: Union[Credential, str],
        new_secret: str,
        acting_user_id: Optional[str] = None,
    ) -> Credential:
        """Encrypt ``new_secret`` and store it as the credential's secret.

        Args:
            credential: Credential (or its id) to rotate.
            new_secret: Replacement plaintext API key.
            acting_user_id: Principal performing the rotation.

        Returns:
            The rotated credential.

        Raises:
            ValidationError: If the new secret is empty.
            CredentialNotFound: If the credential no longer exists.
        """
        credential_id = credential.id if isinstance(credential, Credential) else credential
        encrypted = self._registry.seal(new_secret)
        rotated = await self._registry.storage.update(
            credential_id,
            encrypted_secret=encrypted,
            last_rotated_at=utcnow(),
            updated_by=acting_user_id,
        )
        if rotated is None:
            raise CredentialNotFound(f"Credential {credential_id} not found")
        logger.info(
            "Credential rotated: id=%s provider=%s organization=%s by=%s",
            rotated.id, rotated.provider.value, rotated.organization_id,
            acting_user_id,
        )
        return rotated
