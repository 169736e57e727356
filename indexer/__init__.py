"""Vault ledger indexer: ingestion, durable event log, and vault projections."""

from indexer.catch_up import CatchUpCoordinator, CatchUpPhase, CatchUpResult
from indexer.errors import (
    CatchUpError,
    ConfigError,
    IndexerError,
    InvariantViolation,
    MalformedPayloadError,
    NetworkError,
    PersistenceConflictError,
    RemoteError,
    StorageUnavailableError,
    TransientNetworkError,
    UnknownReferenceError,
)
from indexer.indexer_config import IndexerConfig, load_indexer_config
from indexer.indexer_daemon import IndexerDaemon, IndexerStatus
from indexer.ledger_source import EventOrder, EventPage, LedgerEventRow, LedgerEventSource, ModuleFilter
from indexer.live_poller import LivePoller, TickOutcome, TickResult
from indexer.persistence import PersistenceGateway, ensure_cursor, load_cursor
from indexer.position import GENESIS_POSITION, Position, compare_positions
from indexer.sui_rpc_source import SuiJsonRpcEventSource
from indexer.vault_events import VaultEvent, decode_vault_event, decode_vault_log
from indexer.vault_projector import ProjectionResult, VaultAggregate, apply_vault_event, fold_vault_events
from indexer.vault_query import VaultFilter, VaultQueryService, VaultView

__all__ = [
    "CatchUpCoordinator",
    "CatchUpError",
    "CatchUpPhase",
    "CatchUpResult",
    "ConfigError",
    "EventOrder",
    "EventPage",
    "GENESIS_POSITION",
    "IndexerConfig",
    "IndexerDaemon",
    "IndexerError",
    "IndexerStatus",
    "InvariantViolation",
    "LedgerEventRow",
    "LedgerEventSource",
    "LivePoller",
    "MalformedPayloadError",
    "ModuleFilter",
    "NetworkError",
    "PersistenceConflictError",
    "PersistenceGateway",
    "Position",
    "ProjectionResult",
    "RemoteError",
    "StorageUnavailableError",
    "SuiJsonRpcEventSource",
    "TickOutcome",
    "TickResult",
    "TransientNetworkError",
    "UnknownReferenceError",
    "VaultAggregate",
    "VaultEvent",
    "VaultFilter",
    "VaultQueryService",
    "VaultView",
    "apply_vault_event",
    "compare_positions",
    "decode_vault_event",
    "decode_vault_log",
    "ensure_cursor",
    "fold_vault_events",
    "load_cursor",
    "load_indexer_config",
]
