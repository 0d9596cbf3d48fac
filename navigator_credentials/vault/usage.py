"""
UsageLedger — usage accounting and quota evaluation.

Token quota (``rate_limit.tokens_per_day``):
    - ``daily`` window: compares against tokens consumed on the current
      UTC day (``usage.tokens_today`` while ``usage.usage_day`` is today).
    - ``lifetime`` window: compares against the cumulative
      ``usage.total_tokens``; the limit never resets.

Request rate (``rate_limit.requests_per_minute``):
    Sliding-window counter over minute buckets keyed by credential id;
    the estimate is the current bucket plus the previous bucket weighted
    by how much of it still overlaps the window.
"""
import math
import time
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from ..exceptions import ValidationError
from ..models import Credential, Provider, utcnow
from .config import VaultConfig
from .registry import CredentialRegistry, validate_provider

logger = logging.getLogger("navigator.credentials")


class RequestRateWindow:
    """Requests-per-window counter, in process or in Redis.

    Args:
        redis: Optional redis.asyncio-compatible client shared by workers.
        window_seconds: Width of a bucket (and of the sliding window).
        clock: Callable returning the current epoch time in seconds.
    """

    def __init__(
        self,
        redis: Any = None,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis
        self._window = window_seconds
        self._clock = clock
        self._buckets: dict[tuple[str, int], int] = {}
        self._lock = asyncio.Lock()

    def _bucket(self, now: float) -> int:
        return math.floor(now / self._window)

    def _redis_key(self, credential_id: str, bucket: int) -> str:
        return f"credentials:rpm:{credential_id}:{bucket}"

    async def hit(self, credential_id: str, now: Optional[float] = None) -> None:
        """Count one request for a credential."""
        now = self._clock() if now is None else now
        bucket = self._bucket(now)
        if self._redis is not None:
            key = self._redis_key(credential_id, bucket)
            current = await self._redis.incr(key)
            if current == 1:
                # keep the bucket while it can still be the previous one
                await self._redis.expire(key, self._window * 2)
            return
        async with self._lock:
            key = (credential_id, bucket)
            self._buckets[key] = self._buckets.get(key, 0) + 1
            stale = [k for k in self._buckets if k[1] < bucket - 1]
            for k in stale:
                del self._buckets[k]

    async def _counts(self, credential_id: str, bucket: int) -> tuple[int, int]:
        if self._redis is not None:
            current, previous = await self._redis.mget(
                self._redis_key(credential_id, bucket),
                self._redis_key(credential_id, bucket - 1),
            )
            return int(current or 0), int(previous or 0)
        return (
            self._buckets.get((credential_id, bucket), 0),
            self._buckets.get((credential_id, bucket - 1), 0),
        )

    async def estimate(self, credential_id: str, now: Optional[float] = None) -> float:
        """Requests seen in the last window (sliding estimate)."""
        now = self._clock() if now is None else now
        bucket = self._bucket(now)
        current, previous = await self._counts(credential_id, bucket)
        elapsed = (now % self._window) / self._window
        return current + previous * (1.0 - elapsed)


class UsageLedger:
    """Records consumption against credentials and evaluates limits."""

    def __init__(
        self,
        registry: CredentialRegistry,
        config: VaultConfig,
        redis: Any = None,
    ):
        self._registry = registry
        self._config = config
        self._requests = RequestRateWindow(
            redis=redis, window_seconds=config.rate_window_seconds,
        )

    @property
    def requests(self) -> RequestRateWindow:
        return self._requests

    async def record_usage(
        self,
        provider: Union[str, Provider],
        organization_id: Optional[str],
        tokens_consumed: int = 0,
        cost_cents: int = 0,
    ) -> Optional[Credential]:
        """Atomically add one request, tokens and cost to the active
        credential of ``(organization_id, provider)``.

        When the organization has no active, unexpired credential of its
        own the usage is booked on the platform credential that served it.

        Returns:
            The updated credential, or None if there was none to book on.

        Raises:
            ValidationError: On an unsupported provider or negative amounts.
        """
        provider = validate_provider(provider).value
        if tokens_consumed < 0 or cost_cents < 0:
            raise ValidationError(
                "Usage amounts cannot be negative", reason_code="invalid_usage"
            )
        now = utcnow()
        day = now.astimezone(timezone.utc).date()
        storage = self._registry.storage
        credential = await storage.increment_usage(
            organization_id, provider, tokens_consumed, cost_cents, now, day,
        )
        if credential is None and organization_id is not None:
            credential = await storage.increment_usage(
                None, provider, tokens_consumed, cost_cents, now, day,
            )
        if credential is None:
            logger.warning(
                "Usage not recorded, no active credential: provider=%s organization=%s",
                provider, organization_id,
            )
            return None
        await self._requests.hit(credential.id)
        logger.debug(
            "Usage recorded: id=%s tokens=%d cost_cents=%d",
            credential.id, tokens_consumed, cost_cents,
        )
        return credential

    def tokens_in_window(
        self, credential: Credential, now: Optional[datetime] = None
    ) -> int:
        """Tokens counted against ``tokens_per_day`` for this credential."""
        usage = credential.usage
        if self._config.token_quota_window == "lifetime":
            return usage.total_tokens or 0
        today = (now or utcnow()).astimezone(timezone.utc).date()
        if usage.usage_day != today:
            return 0
        return usage.tokens_today or 0

    def is_rate_limited(
        self,
        credential: Credential,
        tokens_to_consume: int = 0,
        now: Optional[datetime] = None,
    ) -> bool:
        """True iff a token limit is set and this request would exceed it."""
        limit = credential.rate_limit.tokens_per_day
        if not limit:
            return False
        return self.tokens_in_window(credential, now) + tokens_to_consume > limit

    async def is_request_rate_limited(
        self, credential: Credential, now: Optional[float] = None
    ) -> bool:
        """True iff a requests-per-minute limit is set and already reached."""
        limit = credential.rate_limit.requests_per_minute
        if not limit:
            return False
        return await self._requests.estimate(credential.id, now) >= limit

    async def is_throttled(
        self, credential: Credential, tokens_to_consume: int = 0
    ) -> bool:
        """True if either the token quota or the request rate blocks a call."""
        if self.is_rate_limited(credential, tokens_to_consume):
            return True
        return await self.is_request_rate_limited(credential)
