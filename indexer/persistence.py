"""Atomic, idempotent persistence of event batches and the ingestion cursor."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Mapping, Sequence

from indexer.common import IndexerClock, IndexerDatabase, RetryPolicy, TransactionalIndexerDatabase, call_with_retry
from indexer.errors import PersistenceConflictError
from indexer.ledger_source import LedgerEventRow
from indexer.position import GENESIS_POSITION, Position, compare_positions, is_after

logger = logging.getLogger(__name__)

CURSOR_ID = 1

_SELECT_CURSOR_SQL = """
    SELECT last_txn_digest, last_event_seq
    FROM indexer_cursor
    WHERE cursor_id = :cursor_id
"""


def _row_to_position(row: Mapping[str, Any]) -> Position:
    return Position(event_seq=int(row["last_event_seq"]), txn_digest=str(row["last_txn_digest"]))


def load_cursor(db: IndexerDatabase) -> Position:
    """Read the durable cursor, treating a missing row as genesis."""
    row = db.fetch_one(_SELECT_CURSOR_SQL, {"cursor_id": CURSOR_ID})
    if row is None:
        return GENESIS_POSITION
    return _row_to_position(row)


def ensure_cursor(db: TransactionalIndexerDatabase, *, clock: IndexerClock | None = None) -> Position:
    """Create the singleton cursor at genesis when absent and return the durable cursor."""
    row = db.fetch_one(_SELECT_CURSOR_SQL, {"cursor_id": CURSOR_ID})
    if row is not None:
        return _row_to_position(row)

    logger.info("No durable cursor found; initializing at genesis")
    now_utc = (clock or IndexerClock()).now_utc()
    db.begin()
    try:
        db.execute(
            """
            INSERT INTO indexer_cursor (cursor_id, last_txn_digest, last_event_seq, updated_at_utc)
            VALUES (:cursor_id, :last_txn_digest, :last_event_seq, :updated_at_utc)
            ON CONFLICT (cursor_id) DO NOTHING
            """,
            {
                "cursor_id": CURSOR_ID,
                "last_txn_digest": GENESIS_POSITION.txn_digest,
                "last_event_seq": GENESIS_POSITION.event_seq,
                "updated_at_utc": now_utc,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return load_cursor(db)


def _check_batch_order(batch: Sequence[LedgerEventRow]) -> None:
    for previous, current in zip(batch, batch[1:]):
        if compare_positions(previous.position, current.position) > 0:
            raise ValueError(
                f"Batch is not in ascending position order: {previous.position.short()} > {current.position.short()}"
            )


class PersistenceGateway:
    """Writes event batches and the trailing cursor as one atomic, retried unit.

    Event inserts use skip-duplicates semantics, so replaying a batch (overlapping
    catch-up and poll windows, retries after an ambiguous commit) is a no-op. The
    cursor is moved to the batch tail inside the same transaction and never moves
    backwards: re-persisting an older batch leaves the stored cursor unchanged.
    """

    def __init__(
        self,
        db: TransactionalIndexerDatabase,
        *,
        retry_policy: RetryPolicy,
        clock: IndexerClock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._db = db
        self._retry_policy = retry_policy
        self._clock = clock or IndexerClock()
        self._sleep = sleep
        self._batches_persisted = 0

    @property
    def batches_persisted(self) -> int:
        return self._batches_persisted

    def current_cursor(self) -> Position:
        return load_cursor(self._db)

    def persist(self, batch: Sequence[LedgerEventRow]) -> Position:
        """Persist ``batch`` and return the durable cursor after the write."""
        if not batch:
            return load_cursor(self._db)
        _check_batch_order(batch)

        new_cursor = call_with_retry(
            lambda: self._persist_once(batch),
            policy=self._retry_policy,
            retry_on=(PersistenceConflictError,),
            description=f"persist batch of {len(batch)} events",
            sleep=self._sleep,
        )
        self._batches_persisted += 1
        logger.info("Persisted %d events; cursor at %s", len(batch), new_cursor.short())
        return new_cursor

    def _persist_once(self, batch: Sequence[LedgerEventRow]) -> Position:
        tail = batch[-1].position
        now_utc = self._clock.now_utc()
        db = self._db
        try:
            db.begin()
            for row in batch:
                db.execute(
                    """
                    INSERT INTO ledger_event (
                        txn_digest, event_seq, package_id, txn_module, sender,
                        event_type, timestamp_ms, payload_json, ingested_at_utc
                    ) VALUES (
                        :txn_digest, :event_seq, :package_id, :txn_module, :sender,
                        :event_type, :timestamp_ms, CAST(:payload_json AS JSONB), :ingested_at_utc
                    )
                    ON CONFLICT (txn_digest, event_seq) DO NOTHING
                    """,
                    {
                        "txn_digest": row.txn_digest,
                        "event_seq": row.event_seq,
                        "package_id": row.package_id,
                        "txn_module": row.txn_module,
                        "sender": row.sender,
                        "event_type": row.event_type,
                        "timestamp_ms": row.timestamp_ms,
                        "payload_json": json.dumps(dict(row.payload), sort_keys=True, separators=(",", ":")),
                        "ingested_at_utc": now_utc,
                    },
                )

            current_row = db.fetch_one(_SELECT_CURSOR_SQL + " FOR UPDATE", {"cursor_id": CURSOR_ID})
            current = GENESIS_POSITION if current_row is None else _row_to_position(current_row)
            if current_row is None or is_after(tail, current):
                db.execute(
                    """
                    INSERT INTO indexer_cursor (cursor_id, last_txn_digest, last_event_seq, updated_at_utc)
                    VALUES (:cursor_id, :last_txn_digest, :last_event_seq, :updated_at_utc)
                    ON CONFLICT (cursor_id) DO UPDATE
                    SET last_txn_digest = EXCLUDED.last_txn_digest,
                        last_event_seq = EXCLUDED.last_event_seq,
                        updated_at_utc = EXCLUDED.updated_at_utc
                    """,
                    {
                        "cursor_id": CURSOR_ID,
                        "last_txn_digest": tail.txn_digest,
                        "last_event_seq": tail.event_seq,
                        "updated_at_utc": now_utc,
                    },
                )
                result = tail
            else:
                result = current
            db.commit()
        except Exception as exc:
            db.rollback()
            raise PersistenceConflictError(f"Atomic batch write failed: {type(exc).__name__}: {exc}") from exc
        return result
