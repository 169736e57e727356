"""Error taxonomy for vault ledger ingestion and projection."""

from __future__ import annotations


class IndexerError(RuntimeError):
    """Base class for indexer failures."""


class ConfigError(IndexerError):
    """Raised when required environment configuration is missing or invalid."""


class TransientNetworkError(IndexerError):
    """Remote query timed out or the connection failed."""


NetworkError = TransientNetworkError


class RemoteError(IndexerError):
    """Remote ledger returned an error payload or a malformed response."""


class PersistenceConflictError(IndexerError):
    """Durable write failed under contention or a transient storage fault."""


class MalformedPayloadError(IndexerError):
    """Event payload is missing required fields or carries invalid values."""


class UnknownReferenceError(IndexerError):
    """Event references a vault or coin type that was never established."""


class InvariantViolation(IndexerError):
    """Event would drive an aggregate into an impossible state."""


class CatchUpError(IndexerError):
    """Catch-up could not drain the backlog; live polling must not start."""


class StorageUnavailableError(IndexerError):
    """Read path could not reach durable storage."""
