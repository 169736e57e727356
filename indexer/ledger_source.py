"""Ledger event source protocol and normalized event types."""

from __future__ import annotations

from dataclasses import dataclass, field
import enum
from typing import Any, Mapping, Optional, Protocol, Sequence

from indexer.position import Position, is_after


class EventOrder(str, enum.Enum):
    """Remote-native ordering of a paginated event query."""

    ASCENDING = "ascending"
    DESCENDING = "descending"


@dataclass(frozen=True)
class ModuleFilter:
    """Restricts a query to events emitted by one Move module."""

    package_id: str
    module_name: str

    def to_query(self) -> dict[str, Any]:
        return {"MoveModule": {"package": self.package_id, "module": self.module_name}}


@dataclass(frozen=True)
class LedgerEventRow:
    """Normalized ledger event as stored in ``ledger_event``."""

    event_seq: int
    txn_digest: str
    package_id: str
    txn_module: str
    sender: Optional[str]
    event_type: str
    timestamp_ms: int
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def position(self) -> Position:
        return Position(event_seq=self.event_seq, txn_digest=self.txn_digest)


@dataclass(frozen=True)
class EventPage:
    """One page of a remote event query."""

    events: tuple[LedgerEventRow, ...]
    has_next_page: bool
    next_cursor: Optional[Position]


class LedgerEventSource(Protocol):
    """Paginated read access to the remote ledger's event stream.

    Implementations perform a single remote call per query and never retry;
    retry policy belongs to the caller. Transport failures raise
    ``TransientNetworkError`` and malformed responses raise ``RemoteError``.
    """

    def query_events(
        self,
        module_filter: ModuleFilter,
        cursor: Optional[Position],
        limit: int,
        order: EventOrder,
    ) -> EventPage:
        """Fetch one page of events starting after ``cursor``."""


def events_strictly_after(events: Sequence[LedgerEventRow], reference: Position) -> list[LedgerEventRow]:
    """Keep only events positioned strictly after ``reference``."""
    return [event for event in events if is_after(event.position, reference)]
