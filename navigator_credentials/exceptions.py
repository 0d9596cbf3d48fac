"""Credential Vault exceptions.

Decryption failures are not part of this hierarchy: the cipher store
recovers them locally and returns ``None``.
"""


class CredentialError(Exception):
    """Base error for the credential vault."""

    reason_code: str = "credential_error"

    def __init__(self, message: str, *, reason_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if reason_code is not None:
            self.reason_code = reason_code

    def __str__(self) -> str:
        return self.message


class ValidationError(CredentialError, ValueError):
    """Malformed input to create/upsert/rotate (bad provider, missing secret)."""

    reason_code = "validation_error"


class CredentialNotFound(CredentialError, LookupError):
    """The requested credential does not exist."""

    reason_code = "credential_not_found"


class NoCredentialAvailable(CredentialNotFound):
    """Resolution found no usable credential for a provider."""

    reason_code = "no_credential_available"

    def __init__(self, provider: str, organization_id: str | None = None) -> None:
        self.provider = provider
        self.organization_id = organization_id
        scope = f"organization '{organization_id}'" if organization_id else "platform"
        super().__init__(
            f"No usable credential configured for provider '{provider}' ({scope})"
        )


class ConcurrencyViolation(CredentialError):
    """Storage rejected a second active credential for the same scope."""

    reason_code = "active_credential_conflict"
