"""Shared protocols and helpers for the vault ledger indexer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from hashlib import sha256
import logging
import time
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IndexerDatabase(Protocol):
    """Minimal DB protocol used by indexer read paths."""

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        """Fetch rows."""

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        """Execute mutation statement."""


class TransactionalIndexerDatabase(IndexerDatabase, Protocol):
    """DB protocol with explicit transaction control for atomic batch writes."""

    def begin(self) -> None:
        """Open a transaction."""

    def commit(self) -> None:
        """Commit the open transaction."""

    def rollback(self) -> None:
        """Roll back the open transaction."""


@dataclass(frozen=True)
class IndexerClock:
    """Injectable UTC clock for deterministic testing."""

    def now_utc(self) -> datetime:
        """Return current UTC timestamp."""
        return datetime.now(tz=timezone.utc)


def normalize_token(value: Any) -> str:
    """Serialize primitive values deterministically for hashing."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, datetime):
        return utc_iso(value)
    return str(value)


def stable_hash(tokens: Iterable[Any]) -> str:
    """Compute a stable SHA256 hash over canonical token serialization."""
    preimage = "|".join(normalize_token(token) for token in tokens)
    return sha256(preimage.encode("utf-8")).hexdigest()


def utc_iso(ts: datetime) -> str:
    """Normalize timestamp to UTC RFC3339 string."""
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def ms_to_utc(timestamp_ms: int) -> datetime:
    """Convert ledger millisecond timestamps to aware UTC datetimes."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with capped exponential delay between attempts."""

    attempts: int
    min_delay_seconds: float
    max_delay_seconds: float
    factor: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("RetryPolicy.attempts must be >= 1")
        if self.min_delay_seconds < 0 or self.max_delay_seconds < self.min_delay_seconds:
            raise ValueError("RetryPolicy delays must satisfy 0 <= min <= max")

    def delay_before_attempt(self, attempt_number: int) -> float:
        """Delay slept before 1-based ``attempt_number`` (no delay before the first)."""
        if attempt_number <= 1:
            return 0.0
        delay = self.min_delay_seconds * (self.factor ** (attempt_number - 2))
        return min(delay, self.max_delay_seconds)


def call_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...],
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Only exceptions listed in ``retry_on`` are retried; anything else propagates
    immediately. After the final attempt the last error is re-raised unchanged.
    """
    last_error: BaseException | None = None
    for attempt in range(1, policy.attempts + 1):
        delay = policy.delay_before_attempt(attempt)
        if delay > 0:
            sleep(delay)
        try:
            return operation()
        except retry_on as exc:
            last_error = exc
            logger.warning(
                "%s attempt %d/%d failed: %s: %s",
                description,
                attempt,
                policy.attempts,
                type(exc).__name__,
                exc,
            )

    if last_error is None:
        raise RuntimeError(f"{description} failed without an exception")
    raise last_error
