"""One-shot backlog replay from the durable cursor to the remote head."""

from __future__ import annotations

from dataclasses import dataclass
import enum
import logging
import time
from typing import Callable, Optional

from indexer.common import RetryPolicy, call_with_retry
from indexer.errors import CatchUpError, PersistenceConflictError, RemoteError, TransientNetworkError
from indexer.ledger_source import EventOrder, EventPage, LedgerEventSource, ModuleFilter, events_strictly_after
from indexer.persistence import PersistenceGateway
from indexer.position import Position, compare_positions, is_after

logger = logging.getLogger(__name__)


class CatchUpPhase(str, enum.Enum):
    IDLE = "IDLE"
    HEAD_PROBE = "HEAD_PROBE"
    REPLAY = "REPLAY"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class CatchUpResult:
    """Summary of a completed catch-up run."""

    start_cursor: Position
    head: Position
    final_cursor: Position
    pages_fetched: int
    events_persisted: int
    backlog_found: bool


class CatchUpCoordinator:
    """Drain the backlog between the durable cursor and the remote head.

    Runs once per process start. Any failure that survives the retry policy
    aborts with :class:`CatchUpError`; a partially drained backlog is never
    reported as complete.
    """

    def __init__(
        self,
        *,
        source: LedgerEventSource,
        gateway: PersistenceGateway,
        module_filter: ModuleFilter,
        batch_limit: int,
        query_retry_policy: RetryPolicy,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._source = source
        self._gateway = gateway
        self._module_filter = module_filter
        self._batch_limit = batch_limit
        self._query_retry_policy = query_retry_policy
        self._sleep = sleep
        self._phase = CatchUpPhase.IDLE

    @property
    def phase(self) -> CatchUpPhase:
        return self._phase

    def _query(self, cursor: Optional[Position], limit: int, order: EventOrder, description: str) -> EventPage:
        return call_with_retry(
            lambda: self._source.query_events(self._module_filter, cursor, limit, order),
            policy=self._query_retry_policy,
            retry_on=(TransientNetworkError, RemoteError),
            description=description,
            sleep=self._sleep,
        )

    def _probe_head(self, cursor: Position) -> Position:
        page = self._query(None, 1, EventOrder.DESCENDING, "head probe")
        if not page.events:
            logger.info("No events on ledger for %s::%s; nothing to replay", self._module_filter.package_id, self._module_filter.module_name)
            return cursor
        return page.events[0].position

    def run(self) -> CatchUpResult:
        """Execute the catch-up state machine to completion."""
        if self._phase != CatchUpPhase.IDLE:
            raise CatchUpError(f"Catch-up already ran (phase={self._phase.value})")
        try:
            return self._run()
        except (TransientNetworkError, RemoteError, PersistenceConflictError) as exc:
            self._phase = CatchUpPhase.FAILED
            raise CatchUpError(f"Catch-up aborted: {type(exc).__name__}: {exc}") from exc
        except Exception:
            self._phase = CatchUpPhase.FAILED
            raise

    def _run(self) -> CatchUpResult:
        start_cursor = self._gateway.current_cursor()
        cursor = start_cursor

        self._phase = CatchUpPhase.HEAD_PROBE
        head = self._probe_head(cursor)
        if compare_positions(cursor, head) >= 0:
            logger.info("Cursor %s is at or ahead of ledger head %s; catch-up not needed", cursor.short(), head.short())
            self._phase = CatchUpPhase.DONE
            return CatchUpResult(
                start_cursor=start_cursor,
                head=head,
                final_cursor=cursor,
                pages_fetched=0,
                events_persisted=0,
                backlog_found=False,
            )

        logger.info("Catching up from %s to ledger head %s", cursor.short(), head.short())
        self._phase = CatchUpPhase.REPLAY
        page_cursor: Optional[Position] = None if cursor.is_genesis else cursor
        pages = 0
        persisted = 0
        while True:
            page = self._query(page_cursor, self._batch_limit, EventOrder.ASCENDING, "catch-up page")
            pages += 1
            # Pagination boundaries may be inclusive and re-yield the last seen event.
            fresh = events_strictly_after(page.events, cursor)
            if fresh:
                cursor = self._gateway.persist(fresh)
                persisted += len(fresh)

            if not page.has_next_page or page.next_cursor is None:
                break
            if page_cursor is not None and not is_after(page.next_cursor, page_cursor):
                raise RemoteError(f"Pagination did not advance past {page_cursor.short()}")
            page_cursor = page.next_cursor

        logger.info("Catch-up finished after %d pages; cursor at %s", pages, cursor.short())
        self._phase = CatchUpPhase.DONE
        return CatchUpResult(
            start_cursor=start_cursor,
            head=head,
            final_cursor=cursor,
            pages_fetched=pages,
            events_persisted=persisted,
            backlog_found=True,
        )
