"""Indexer test utilities."""

from __future__ import annotations

import copy
import json
import threading
from typing import Any, Mapping, Optional, Sequence

from indexer.ledger_source import EventOrder, EventPage, LedgerEventRow, ModuleFilter
from indexer.position import Position, compare_positions, position_sort_key

PACKAGE_ID = "0xvault"
MODULE_NAME = "vault"
MODULE_FILTER = ModuleFilter(package_id=PACKAGE_ID, module_name=MODULE_NAME)


def digest(n: int) -> str:
    return f"0x{n:064x}"


def make_row(
    seq: int,
    txn_digest: str | None = None,
    *,
    kind: str = "CoinDeposited",
    payload: Mapping[str, Any] | None = None,
    timestamp_ms: int | None = None,
) -> LedgerEventRow:
    return LedgerEventRow(
        event_seq=seq,
        txn_digest=txn_digest or digest(seq + 1),
        package_id=PACKAGE_ID,
        txn_module=MODULE_NAME,
        sender="0xsender",
        event_type=f"{PACKAGE_ID}::{MODULE_NAME}::{kind}",
        timestamp_ms=1_700_000_000_000 + seq * 1000 if timestamp_ms is None else timestamp_ms,
        payload=dict(payload or {}),
    )


class FakeLedgerDB:
    """In-memory transactional DB double that interprets indexer SQL by table markers."""

    def __init__(self) -> None:
        self.events: dict[tuple[str, int], dict[str, Any]] = {}
        self.cursor: dict[str, Any] | None = None
        self.run_log: list[dict[str, Any]] = []
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.begins = 0
        self.commits = 0
        self.rollbacks = 0
        self._snapshot: tuple[Any, ...] | None = None
        self._failures: list[list[Any]] = []
        self._fetch_failures: list[list[Any]] = []

    def fail_execute(self, marker: str, *, times: int = 1, exc: BaseException | None = None) -> None:
        """Raise on the next ``times`` executes whose SQL contains ``marker``."""
        self._failures.append([marker, times, exc or RuntimeError(f"forced failure on {marker}")])

    def fail_fetch(self, marker: str, *, times: int = 1, exc: BaseException | None = None) -> None:
        self._fetch_failures.append([marker, times, exc or RuntimeError(f"forced fetch failure on {marker}")])

    @staticmethod
    def _maybe_fail(failures: list[list[Any]], sql: str) -> None:
        for entry in failures:
            marker, remaining, exc = entry
            if remaining > 0 and marker in sql:
                entry[1] = remaining - 1
                raise exc

    @property
    def in_transaction(self) -> bool:
        return self._snapshot is not None

    def begin(self) -> None:
        self.begins += 1
        self._snapshot = (copy.deepcopy(self.events), copy.deepcopy(self.cursor), list(self.run_log))

    def commit(self) -> None:
        self.commits += 1
        self._snapshot = None

    def rollback(self) -> None:
        self.rollbacks += 1
        if self._snapshot is not None:
            self.events, self.cursor, self.run_log = self._snapshot
        self._snapshot = None

    def stored_positions(self) -> list[Position]:
        positions = [Position(event_seq=seq, txn_digest=txn) for txn, seq in self.events]
        return sorted(positions, key=position_sort_key)

    def cursor_position(self) -> Optional[Position]:
        if self.cursor is None:
            return None
        return Position(event_seq=self.cursor["last_event_seq"], txn_digest=self.cursor["last_txn_digest"])

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        self._maybe_fail(self._failures, sql)
        values = dict(params)
        self.executed.append((sql, values))
        if "INSERT INTO ledger_event" in sql:
            key = (values["txn_digest"], values["event_seq"])
            if key not in self.events:
                stored = dict(values)
                stored["payload_json"] = json.loads(values["payload_json"])
                self.events[key] = stored
            return
        if "INSERT INTO indexer_cursor" in sql:
            if self.cursor is not None and "DO NOTHING" in sql:
                return
            self.cursor = {
                "cursor_id": values["cursor_id"],
                "last_txn_digest": values["last_txn_digest"],
                "last_event_seq": values["last_event_seq"],
                "updated_at_utc": values["updated_at_utc"],
            }
            return
        if "INSERT INTO indexer_run_log" in sql:
            self.run_log.append(values)
            return

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        self._maybe_fail(self._fetch_failures, sql)
        if "FROM indexer_cursor" in sql:
            return [] if self.cursor is None else [dict(self.cursor)]
        if "FROM ledger_event" in sql:
            rows = [
                row
                for row in self.events.values()
                if row["package_id"] == params["package_id"] and row["txn_module"] == params["txn_module"]
            ]
            if "COUNT(*)" in sql:
                latest = max((row["timestamp_ms"] for row in rows), default=None)
                return [{"n": len(rows), "latest_timestamp_ms": latest}]
            if "event_types" in params:
                allowed = set(params["event_types"])
                rows = [row for row in rows if row["event_type"] in allowed]
            rows.sort(key=lambda row: (row["event_seq"], row["txn_digest"]))
            return [copy.deepcopy(row) for row in rows]
        if "FROM indexer_run_log" in sql:
            return list(self.run_log)
        return []


class ScriptedEventSource:
    """Event source double serving pages from a fixed, position-ordered event list.

    Ascending queries return up to ``limit`` events strictly after the cursor
    (or, with ``inclusive_boundary``, starting at it). Scripted errors are
    raised, in order, before any page is served.
    """

    def __init__(
        self,
        events: Sequence[LedgerEventRow] = (),
        *,
        inclusive_boundary: bool = False,
        errors: Sequence[BaseException] = (),
    ) -> None:
        self.events = sorted(events, key=lambda row: position_sort_key(row.position))
        self.inclusive_boundary = inclusive_boundary
        self.errors = list(errors)
        self.calls: list[tuple[Optional[Position], int, EventOrder]] = []
        self.gate: threading.Event | None = None
        self.entered = threading.Event()

    def append(self, *rows: LedgerEventRow) -> None:
        self.events = sorted([*self.events, *rows], key=lambda row: position_sort_key(row.position))

    def block_until(self, gate: threading.Event) -> None:
        """Make each query wait on ``gate``; ``entered`` is set when a query starts."""
        self.gate = gate

    def query_events(
        self,
        module_filter: ModuleFilter,
        cursor: Optional[Position],
        limit: int,
        order: EventOrder,
    ) -> EventPage:
        self.calls.append((cursor, limit, order))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5.0)
        if self.errors:
            raise self.errors.pop(0)

        if order == EventOrder.DESCENDING:
            ordered = list(reversed(self.events))
            if cursor is not None:
                ordered = [row for row in ordered if compare_positions(row.position, cursor) < 0]
        else:
            ordered = list(self.events)
            if cursor is not None:
                if self.inclusive_boundary:
                    ordered = [row for row in ordered if compare_positions(row.position, cursor) >= 0]
                else:
                    ordered = [row for row in ordered if compare_positions(row.position, cursor) > 0]

        page = tuple(ordered[:limit])
        has_next = len(ordered) > limit
        next_cursor = page[-1].position if page else cursor
        return EventPage(events=page, has_next_page=has_next, next_cursor=next_cursor)
