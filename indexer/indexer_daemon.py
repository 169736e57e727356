"""Single-process indexer orchestration: cursor bootstrap, catch-up, live polling."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
from typing import Callable, Optional

from indexer.catch_up import CatchUpCoordinator, CatchUpResult
from indexer.common import IndexerClock, TransactionalIndexerDatabase, stable_hash
from indexer.errors import CatchUpError
from indexer.indexer_config import IndexerConfig
from indexer.ledger_source import LedgerEventSource
from indexer.live_poller import LivePoller, TickOutcome, TickResult
from indexer.persistence import PersistenceGateway, ensure_cursor, load_cursor
from indexer.position import Position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexerStatus:
    """User-facing indexer status payload."""

    cursor: Position
    stored_event_count: int
    latest_event_timestamp_ms: int | None


class IndexerDaemon:
    """Catch up once, then keep the event log current with a single-flight poller."""

    def __init__(
        self,
        *,
        db: TransactionalIndexerDatabase,
        source: LedgerEventSource,
        config: IndexerConfig,
        clock: IndexerClock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._db = db
        self._source = source
        self._config = config
        self._clock = clock or IndexerClock()
        self._sleep = sleep
        self._gateway = PersistenceGateway(
            db,
            retry_policy=config.persist_retry_policy(),
            clock=self._clock,
            sleep=sleep,
        )
        self._poller = LivePoller(
            source=source,
            gateway=self._gateway,
            module_filter=config.module_filter,
            batch_limit=config.batch_limit,
            interval_seconds=config.poll_interval_seconds,
            query_retry_policy=config.query_retry_policy(),
            sleep=sleep,
        )

    @property
    def gateway(self) -> PersistenceGateway:
        return self._gateway

    @property
    def poller(self) -> LivePoller:
        return self._poller

    def _safe_log_event(self, event_type: str, status: str, details: str) -> None:
        try:
            self._log_event(event_type, status, details)
        except Exception as exc:
            logger.warning("Run log write failed for %s/%s: %s: %s", event_type, status, type(exc).__name__, exc)

    def _log_event(self, event_type: str, status: str, details: str) -> None:
        ts = self._clock.now_utc()
        row_hash = stable_hash(("indexer_run_log", event_type, status, ts.isoformat(), details))
        self._db.execute(
            """
            INSERT INTO indexer_run_log (
                event_ts_utc, event_type, status, details, row_hash
            ) VALUES (
                :event_ts_utc, :event_type, :status, :details, :row_hash
            )
            """,
            {
                "event_ts_utc": ts,
                "event_type": event_type,
                "status": status,
                "details": details,
                "row_hash": row_hash,
            },
        )

    def run_catch_up(self) -> CatchUpResult:
        """Drain the backlog to the ledger head; raises :class:`CatchUpError` on failure."""
        ensure_cursor(self._db, clock=self._clock)
        coordinator = CatchUpCoordinator(
            source=self._source,
            gateway=self._gateway,
            module_filter=self._config.module_filter,
            batch_limit=self._config.batch_limit,
            query_retry_policy=self._config.query_retry_policy(),
            sleep=self._sleep,
        )
        self._safe_log_event("CATCH_UP", "STARTED", f"cursor={load_cursor(self._db).short()}")
        try:
            result = coordinator.run()
        except CatchUpError as exc:
            self._safe_log_event("CATCH_UP", "FAILED", f"error={type(exc).__name__}:{exc}")
            raise
        self._safe_log_event(
            "CATCH_UP",
            "COMPLETED",
            f"pages={result.pages_fetched},events={result.events_persisted},cursor={result.final_cursor.short()}",
        )
        return result

    def poll_once(self) -> TickResult:
        """Run a single live-poll tick outside the timer loop."""
        ensure_cursor(self._db, clock=self._clock)
        result = self._poller.tick()
        if result.outcome == TickOutcome.FAILED:
            self._safe_log_event("POLL", "FAILED", "tick failed; cursor reloads on next tick")
        elif result.outcome == TickOutcome.PERSISTED:
            self._safe_log_event("POLL", "PERSISTED", f"events={result.events_persisted}")
        return result

    def run(self, stop_event: threading.Event, *, max_ticks: Optional[int] = None) -> CatchUpResult:
        """Catch up, then poll until ``stop_event`` is set or ``max_ticks`` ticks were dispatched.

        A failed catch-up aborts startup; live polling never starts from a
        partially drained backlog.
        """
        self._safe_log_event("DAEMON", "STARTED", f"max_ticks={max_ticks if max_ticks is not None else 'infinite'}")
        ticks = 0
        try:
            result = self.run_catch_up()
            if not self._config.enable_live_polling:
                logger.info("Live polling disabled; exiting after catch-up")
                return result
            ticks = self._poller.run(stop_event, max_ticks=max_ticks)
            return result
        finally:
            self._safe_log_event(
                "DAEMON",
                "STOPPED",
                f"ticks={ticks},skipped={self._poller.ticks_skipped},failed={self._poller.ticks_failed}",
            )

    def get_status(self) -> IndexerStatus:
        """Read current cursor and stored-event summary."""
        module_filter = self._config.module_filter
        row = self._db.fetch_one(
            """
            SELECT COUNT(*) AS n, MAX(timestamp_ms) AS latest_timestamp_ms
            FROM ledger_event
            WHERE package_id = :package_id
              AND txn_module = :txn_module
            """,
            {"package_id": module_filter.package_id, "txn_module": module_filter.module_name},
        )
        count = 0 if row is None else int(row["n"] or 0)
        latest = None if row is None or row["latest_timestamp_ms"] is None else int(row["latest_timestamp_ms"])
        return IndexerStatus(
            cursor=load_cursor(self._db),
            stored_event_count=count,
            latest_event_timestamp_ms=latest,
        )
