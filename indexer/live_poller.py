"""Steady-state, single-flight incremental ingestion after catch-up."""

from __future__ import annotations

from dataclasses import dataclass
import enum
import logging
import threading
import time
from typing import Callable, Optional, Sequence

from indexer.common import RetryPolicy, call_with_retry
from indexer.errors import RemoteError, TransientNetworkError
from indexer.ledger_source import EventOrder, LedgerEventRow, LedgerEventSource, ModuleFilter
from indexer.persistence import PersistenceGateway
from indexer.position import Position, is_after, is_at_or_before

logger = logging.getLogger(__name__)


class TickOutcome(str, enum.Enum):
    SKIPPED_BUSY = "SKIPPED_BUSY"
    NO_NEW_EVENTS = "NO_NEW_EVENTS"
    PERSISTED = "PERSISTED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class TickResult:
    outcome: TickOutcome
    events_persisted: int
    cursor: Optional[Position]


def select_new_events(events: Sequence[LedgerEventRow], cursor: Position) -> list[LedgerEventRow]:
    """Return the run of events that strictly extends ``cursor``.

    Leading entries at or before the cursor (an inclusive page boundary) are
    dropped. Consumption then stops at the first entry that does not move
    strictly forward; it is picked up again by a later tick.
    """
    index = 0
    while index < len(events) and is_at_or_before(events[index].position, cursor):
        index += 1

    selected: list[LedgerEventRow] = []
    last = cursor
    for event in events[index:]:
        if not is_after(event.position, last):
            break
        selected.append(event)
        last = event.position
    return selected


class LivePoller:
    """Timer-driven poller with at most one tick in flight.

    The busy guard is a lock owned by this poller. A tick that fires while the
    previous one is still running is dropped, not queued.
    """

    def __init__(
        self,
        *,
        source: LedgerEventSource,
        gateway: PersistenceGateway,
        module_filter: ModuleFilter,
        batch_limit: int,
        interval_seconds: float,
        query_retry_policy: RetryPolicy,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._source = source
        self._gateway = gateway
        self._module_filter = module_filter
        self._batch_limit = batch_limit
        self._interval_seconds = interval_seconds
        self._query_retry_policy = query_retry_policy
        self._sleep = sleep
        self._cursor: Optional[Position] = None
        self._in_flight = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._ticks_skipped = 0
        self._ticks_failed = 0

    @property
    def cursor(self) -> Optional[Position]:
        """Poller's local view of the durable cursor (``None`` until first tick)."""
        return self._cursor

    @property
    def ticks_skipped(self) -> int:
        return self._ticks_skipped

    @property
    def ticks_failed(self) -> int:
        return self._ticks_failed

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def tick(self) -> TickResult:
        """Run one poll tick unless another is already in flight."""
        if not self._in_flight.acquire(blocking=False):
            self._ticks_skipped += 1
            logger.debug("Previous poll tick still in flight; skipping")
            return TickResult(outcome=TickOutcome.SKIPPED_BUSY, events_persisted=0, cursor=self._cursor)
        try:
            return self._tick()
        except Exception as exc:
            self._ticks_failed += 1
            # Resume from the durable cursor; it is the only record of progress.
            self._cursor = None
            logger.warning("Poll tick failed: %s: %s", type(exc).__name__, exc, exc_info=True)
            return TickResult(outcome=TickOutcome.FAILED, events_persisted=0, cursor=None)
        finally:
            self._in_flight.release()

    def _tick(self) -> TickResult:
        cursor = self._cursor if self._cursor is not None else self._gateway.current_cursor()
        self._cursor = cursor
        page = call_with_retry(
            lambda: self._source.query_events(
                self._module_filter,
                None if cursor.is_genesis else cursor,
                self._batch_limit,
                EventOrder.ASCENDING,
            ),
            policy=self._query_retry_policy,
            retry_on=(TransientNetworkError, RemoteError),
            description="poll page",
            sleep=self._sleep,
        )
        fresh = select_new_events(page.events, cursor)
        if not fresh:
            return TickResult(outcome=TickOutcome.NO_NEW_EVENTS, events_persisted=0, cursor=cursor)

        self._cursor = self._gateway.persist(fresh)
        return TickResult(outcome=TickOutcome.PERSISTED, events_persisted=len(fresh), cursor=self._cursor)

    def run(self, stop_event: threading.Event, *, max_ticks: Optional[int] = None) -> int:
        """Fire ticks every interval until ``stop_event`` is set; return ticks dispatched.

        On stop, no further ticks are scheduled and the in-flight tick, including
        its persist, is allowed to finish before returning.
        """
        logger.info("Live poller started; interval=%.3fs batch_limit=%d", self._interval_seconds, self._batch_limit)
        dispatched = 0
        try:
            while not stop_event.wait(self._interval_seconds):
                if self._worker is not None and self._worker.is_alive():
                    self._ticks_skipped += 1
                    logger.debug("Poll tick fired while previous tick in flight; dropped")
                    continue
                self._worker = threading.Thread(target=self.tick, name="live-poll-tick", daemon=True)
                self._worker.start()
                dispatched += 1
                if max_ticks is not None and dispatched >= max_ticks:
                    break
        finally:
            self.wait_idle()
            logger.info("Live poller stopped after %d ticks (%d skipped)", dispatched, self._ticks_skipped)
        return dispatched

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Block until the in-flight tick, if any, completes."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
