"""Credential Vault — Encrypted AI-provider keys scoped to organizations.

Security Note (Threat Model):
    Secrets are decrypted in process memory when a credential is used.
    The master key is process-wide state; if none is configured an
    ephemeral one is generated and every credential stored with it is
    unreadable after the process restarts. Persisting and rotating the
    master key is a deployment concern.
"""

from .credential_vault import CredentialVault
from .crypto import CipherStore
from .registry import CredentialRegistry
from .resolution import ResolutionPolicy
from .rotation import RotationManager
from .usage import UsageLedger, RequestRateWindow
from .config import VaultConfig, load_master_key, generate_master_key

__all__ = [
    "CredentialVault",
    "CipherStore",
    "CredentialRegistry",
    "ResolutionPolicy",
    "RotationManager",
    "UsageLedger",
    "RequestRateWindow",
    "VaultConfig",
    "load_master_key",
    "generate_master_key",
]
