"""Credential storage backends."""
from .abstract import AbstractCredentialStorage, ALL_SCOPES
from .memory import MemoryCredentialStorage

__all__ = [
    "AbstractCredentialStorage",
    "ALL_SCOPES",
    "MemoryCredentialStorage",
]
