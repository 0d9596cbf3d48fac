"""
Credential records — statically declared types for the vault.

A credential with ``organization_id = None`` is a platform-global key,
usable as fallback by every organization for its provider.
"""
import uuid
from enum import Enum
from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_LABEL = "Default Key"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Provider(str, Enum):
    """AI backends a credential can belong to."""

    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GROQ = "groq"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


class CredentialUsage(BaseModel):
    """Aggregate usage counters of a credential.

    ``tokens_today`` only counts tokens consumed on ``usage_day`` (UTC);
    the first increment of a new day starts it over.
    """

    total_requests: int = 0
    total_tokens: int = 0
    total_cost_cents: int = 0
    last_used_at: Optional[datetime] = None
    tokens_today: int = 0
    usage_day: Optional[date] = None


class RateLimit(BaseModel):
    """Per-credential limits; ``None`` (or 0) means unlimited."""

    requests_per_minute: Optional[int] = Field(default=None, ge=0)
    tokens_per_day: Optional[int] = Field(default=None, ge=0)


class Credential(BaseModel):
    """An encrypted provider API key owned by an organization or the platform."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    organization_id: Optional[str] = None
    provider: Provider
    encrypted_secret: str = Field(repr=False)
    label: str = DEFAULT_LABEL
    is_active: bool = True
    usage: CredentialUsage = Field(default_factory=CredentialUsage)
    rate_limit: RateLimit = Field(default_factory=RateLimit)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    last_rotated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("label", mode="before")
    @classmethod
    def clean_label(cls, v: Optional[str]) -> str:
        """Trim labels; blank labels fall back to the default one."""
        if v is None:
            return DEFAULT_LABEL
        v = str(v).strip()
        return v or DEFAULT_LABEL

    @property
    def is_platform(self) -> bool:
        return self.organization_id is None

    @property
    def scope(self) -> tuple[Optional[str], str]:
        return self.organization_id, self.provider.value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True iff ``expires_at`` is set and already in the past."""
        if self.expires_at is None:
            return False
        now = now or utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now > expires_at

