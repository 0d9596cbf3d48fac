"""Navigator Credentials.

Multi-tenant vault for AI-provider API keys: organization keys with
platform fallback, encryption at rest, usage metering and rotation.
"""
from .version import (
    __title__,
    __description__,
    __version__,
    __author__,
    __author_email__,
    __license__,
)
from .exceptions import (
    CredentialError,
    ValidationError,
    CredentialNotFound,
    NoCredentialAvailable,
    ConcurrencyViolation,
)
from .models import Credential, CredentialUsage, RateLimit, Provider
from .vault import CredentialVault, VaultConfig

__all__ = (
    "CredentialVault",
    "VaultConfig",
    "Credential",
    "CredentialUsage",
    "RateLimit",
    "Provider",
    "CredentialError",
    "ValidationError",
    "CredentialNotFound",
    "NoCredentialAvailable",
    "ConcurrencyViolation",
)
