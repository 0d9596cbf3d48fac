"""
Vault Configuration — Master key loading and validated settings.

Reads configuration from environment variables:
    CREDENTIALS_MASTER_KEY = <base64-encoded 32-byte key>
    CREDENTIALS_TOKEN_QUOTA_WINDOW = daily | lifetime

Security Note:
    Never log key material. Without CREDENTIALS_MASTER_KEY an ephemeral
    key is generated for the process lifetime: everything encrypted with
    it becomes unreadable after a restart.
"""
import os
import base64
import secrets
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("navigator.credentials")

KEY_LENGTH = 32  # AES-256

MASTER_KEY_ENV = "CREDENTIALS_MASTER_KEY"
QUOTA_WINDOW_ENV = "CREDENTIALS_TOKEN_QUOTA_WINDOW"

QUOTA_WINDOWS = ("daily", "lifetime")


def decode_master_key(raw: str) -> bytes:
    """Decode a base64 master key and check it is 32 bytes long.

    Raises:
        ValueError: If the value is not base64 or has the wrong length.
    """
    try:
        key = base64.b64decode(raw.strip(), validate=True)
    except (ValueError, TypeError) as err:
        raise ValueError(f"{MASTER_KEY_ENV} must be valid base64") from err
    if len(key) != KEY_LENGTH:
        raise ValueError(
            f"{MASTER_KEY_ENV} must decode to exactly {KEY_LENGTH} bytes, "
            f"got {len(key)}"
        )
    return key


def load_master_key() -> Optional[bytes]:
    """Load the master key from the environment, or None if it is not set."""
    raw = os.environ.get(MASTER_KEY_ENV, "").strip()
    if not raw:
        return None
    return decode_master_key(raw)


def generate_master_key() -> str:
    """Generate a random 32-byte master key and return as base64 string.

    This is a utility for operators to generate new keys.
    """
    return base64.b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


class VaultConfig(BaseModel):
    """Validated credential vault configuration."""

    master_key: bytes = Field(repr=False)
    ephemeral_key: bool = False
    token_quota_window: str = Field(default="daily")
    rate_window_seconds: int = Field(default=60, ge=1)

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("master_key")
    @classmethod
    def validate_master_key(cls, v: bytes) -> bytes:
        """Master key must be 32 raw bytes."""
        if len(v) != KEY_LENGTH:
            raise ValueError(
                f"master_key must be exactly {KEY_LENGTH} bytes, got {len(v)}"
            )
        return v

    @field_validator("token_quota_window")
    @classmethod
    def validate_quota_window(cls, v: str) -> str:
        """Validate the token quota window is supported."""
        v = v.lower()
        if v not in QUOTA_WINDOWS:
            raise ValueError(f"Unsupported token quota window: {v}")
        return v

    @classmethod
    def ephemeral(cls, **kwargs) -> "VaultConfig":
        """Config with a random, process-lifetime master key."""
        logger.warning(
            "%s is not set: using an ephemeral master key. Credentials "
            "encrypted by this process will be unreadable after restart.",
            MASTER_KEY_ENV,
        )
        return cls(
            master_key=secrets.token_bytes(KEY_LENGTH),
            ephemeral_key=True,
            **kwargs,
        )

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        window = os.environ.get(QUOTA_WINDOW_ENV, "daily")
        master_key = load_master_key()
        if master_key is None:
            return cls.ephemeral(token_quota_window=window)
        return cls(master_key=master_key, token_quota_window=window)
