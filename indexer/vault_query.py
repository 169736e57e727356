"""Read-only vault queries over the persisted event log."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import threading
from typing import Any, Mapping, Optional, Sequence

from indexer.common import IndexerDatabase
from indexer.errors import StorageUnavailableError
from indexer.ledger_source import LedgerEventRow, ModuleFilter
from indexer.persistence import load_cursor
from indexer.position import Position, position_sort_key
from indexer.vault_events import ProjectionWarning, decode_vault_log, qualified_event_types
from indexer.vault_projector import ProjectionResult, VaultAggregate, fold_vault_events

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VaultFilter:
    """Optional equality filters for :meth:`VaultQueryService.list_vault_aggregates`."""

    creator: Optional[str] = None
    admin: Optional[str] = None
    coin_type: Optional[str] = None

    def matches(self, aggregate: VaultAggregate) -> bool:
        if self.creator is not None and aggregate.creator != self.creator:
            return False
        if self.admin is not None and aggregate.current_admin != self.admin:
            return False
        if self.coin_type is not None and (
            self.coin_type not in aggregate.balances and self.coin_type not in aggregate.allocations
        ):
            return False
        return True


@dataclass(frozen=True)
class VaultTokenView:
    coin_type: str
    amount: int
    weight_bps: int


@dataclass(frozen=True)
class VaultView:
    """Aggregate plus its per-coin token list, sorted by coin type."""

    aggregate: VaultAggregate
    tokens: tuple[VaultTokenView, ...]

    @property
    def vault_id(self) -> str:
        return self.aggregate.vault_id

    def to_document(self) -> dict[str, Any]:
        document = self.aggregate.to_document()
        document["tokens"] = [
            {"coinType": token.coin_type, "amount": str(token.amount), "weightBps": token.weight_bps}
            for token in self.tokens
        ]
        return document


def build_vault_view(aggregate: VaultAggregate) -> VaultView:
    coin_types = sorted(set(aggregate.balances) | set(aggregate.allocations))
    tokens = tuple(
        VaultTokenView(
            coin_type=coin_type,
            amount=aggregate.balances.get(coin_type, 0),
            weight_bps=aggregate.allocations.get(coin_type, 0),
        )
        for coin_type in coin_types
    )
    return VaultView(aggregate=aggregate, tokens=tokens)


def _row_to_event(row: Mapping[str, Any]) -> LedgerEventRow:
    payload = row.get("payload_json")
    if isinstance(payload, (str, bytes)):
        payload = json.loads(payload)
    sender = row.get("sender")
    return LedgerEventRow(
        event_seq=int(row["event_seq"]),
        txn_digest=str(row["txn_digest"]),
        package_id=str(row["package_id"]),
        txn_module=str(row["txn_module"]),
        sender=None if sender is None else str(sender),
        event_type=str(row["event_type"]),
        timestamp_ms=int(row["timestamp_ms"]),
        payload=payload if isinstance(payload, Mapping) else {},
    )


def load_vault_event_rows(db: IndexerDatabase, module_filter: ModuleFilter) -> list[LedgerEventRow]:
    """Read the module's vault events in ascending position order."""
    rows = db.fetch_all(
        """
        SELECT
            txn_digest, event_seq, package_id, txn_module, sender,
            event_type, timestamp_ms, payload_json
        FROM ledger_event
        WHERE package_id = :package_id
          AND txn_module = :txn_module
          AND event_type = ANY(:event_types)
        ORDER BY event_seq ASC, txn_digest COLLATE "C" ASC
        """,
        {
            "package_id": module_filter.package_id,
            "txn_module": module_filter.module_name,
            "event_types": list(qualified_event_types(module_filter.package_id, module_filter.module_name)),
        },
    )
    events = [_row_to_event(row) for row in rows]
    events.sort(key=lambda event: position_sort_key(event.position))
    return events


def project_from_store(db: IndexerDatabase, module_filter: ModuleFilter) -> ProjectionResult:
    """Decode and fold the full persisted log for one module."""
    decoded = decode_vault_log(load_vault_event_rows(db, module_filter))
    folded = fold_vault_events(decoded.events)
    return ProjectionResult(vaults=folded.vaults, warnings=decoded.warnings + folded.warnings)


class VaultQueryService:
    """Query-facing read model.

    The projection is recomputed from the durable log whenever the durable
    cursor has moved since the last computation, and served from cache otherwise.
    """

    def __init__(self, db: IndexerDatabase, module_filter: ModuleFilter) -> None:
        self._db = db
        self._module_filter = module_filter
        self._lock = threading.Lock()
        self._cached_cursor: Optional[Position] = None
        self._cached: Optional[ProjectionResult] = None
        self._projections_computed = 0

    @property
    def projections_computed(self) -> int:
        return self._projections_computed

    @property
    def warnings(self) -> tuple[ProjectionWarning, ...]:
        """Warnings raised by the most recent projection."""
        return () if self._cached is None else self._cached.warnings

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._cached_cursor = None

    def _projection(self) -> ProjectionResult:
        with self._lock:
            try:
                cursor = load_cursor(self._db)
                if self._cached is not None and self._cached_cursor == cursor:
                    return self._cached
                result = project_from_store(self._db, self._module_filter)
            except Exception as exc:
                logger.exception("Vault projection read failed")
                raise StorageUnavailableError("Vault storage is unavailable") from exc
            self._cached = result
            self._cached_cursor = cursor
            self._projections_computed += 1
            for warning in result.warnings:
                error = warning.as_error()
                logger.warning("Vault projection %s: %s", type(error).__name__, error)
            return result

    def list_vault_aggregates(self, vault_filter: Optional[VaultFilter] = None) -> list[VaultView]:
        """All vaults, newest first (ties by id), optionally filtered."""
        vaults: Sequence[VaultAggregate] = list(self._projection().vaults.values())
        if vault_filter is not None:
            vaults = [vault for vault in vaults if vault_filter.matches(vault)]
        ordered = sorted(vaults, key=lambda vault: vault.vault_id)
        ordered.sort(key=lambda vault: vault.created_at_ms, reverse=True)
        return [build_vault_view(vault) for vault in ordered]

    def get_vault_aggregate(self, vault_id: str) -> Optional[VaultView]:
        """Return the vault, or ``None`` when it is unknown."""
        aggregate = self._projection().vaults.get(vault_id)
        return None if aggregate is None else build_vault_view(aggregate)
