from __future__ import annotations

from dataclasses import FrozenInstanceError, replace
from datetime import datetime, timezone
import threading

import pytest

from indexer.common import IndexerClock
from indexer.errors import CatchUpError, TransientNetworkError
from indexer.indexer_config import IndexerConfig
from indexer.indexer_daemon import IndexerDaemon
from indexer.live_poller import TickOutcome
from indexer.position import GENESIS_POSITION
from tests.indexer.utils import FakeLedgerDB, ScriptedEventSource, make_row


class _FixedClock(IndexerClock):
    def now_utc(self) -> datetime:
        return datetime(2026, 1, 1, tzinfo=timezone.utc)


def _config(**overrides) -> IndexerConfig:  # type: ignore[no-untyped-def]
    base = dict(
        vault_package_id="0xvault",
        vault_module_name="vault",
        sui_network="localnet",
        sui_rpc_url="http://127.0.0.1:9000",
        batch_limit=2,
        poll_interval_ms=100,
        rpc_timeout_seconds=1,
        query_attempts=2,
        persist_attempts=2,
        retry_min_delay_ms=0,
        retry_max_delay_ms=0,
        enable_live_polling=True,
    )
    base.update(overrides)
    return IndexerConfig(**base)


def _daemon(db: FakeLedgerDB, source: ScriptedEventSource, cfg: IndexerConfig | None = None) -> IndexerDaemon:
    return IndexerDaemon(db=db, source=source, config=cfg or _config(), clock=_FixedClock(), sleep=lambda _: None)


def _log_statuses(db: FakeLedgerDB) -> list[tuple[str, str]]:
    return [(row["event_type"], row["status"]) for row in db.run_log]


def test_run_catch_up_initializes_cursor_and_logs_lifecycle() -> None:
    db = FakeLedgerDB()
    rows = [make_row(seq) for seq in range(5)]
    daemon = _daemon(db, ScriptedEventSource(rows))

    result = daemon.run_catch_up()

    assert result.final_cursor == rows[-1].position
    assert result.pages_fetched == 3
    assert _log_statuses(db) == [("CATCH_UP", "STARTED"), ("CATCH_UP", "COMPLETED")]
    assert all(len(row["row_hash"]) == 64 for row in db.run_log)


def test_catch_up_failure_is_logged_and_reraised() -> None:
    db = FakeLedgerDB()
    daemon = _daemon(db, ScriptedEventSource([make_row(0)], errors=[TransientNetworkError("down")] * 2))

    with pytest.raises(CatchUpError):
        daemon.run_catch_up()

    assert _log_statuses(db)[-1] == ("CATCH_UP", "FAILED")
    assert db.cursor_position() == GENESIS_POSITION


def test_run_does_not_poll_after_failed_catch_up() -> None:
    db = FakeLedgerDB()
    source = ScriptedEventSource([make_row(0)], errors=[TransientNetworkError("down")] * 2)
    daemon = _daemon(db, source)

    with pytest.raises(CatchUpError):
        daemon.run(threading.Event(), max_ticks=1)

    assert len(source.calls) == 2
    assert _log_statuses(db)[0] == ("DAEMON", "STARTED")
    assert _log_statuses(db)[-1] == ("DAEMON", "STOPPED")


def test_run_catches_up_then_polls_new_events() -> None:
    db = FakeLedgerDB()
    source = ScriptedEventSource([make_row(0), make_row(1)])
    cfg = _config(poll_interval_ms=10)
    daemon = _daemon(db, source, cfg)

    original_tick = daemon.poller.tick

    def _tick_with_new_event():  # type: ignore[no-untyped-def]
        source.append(make_row(2))
        return original_tick()

    daemon.poller.tick = _tick_with_new_event  # type: ignore[method-assign]
    daemon.run(threading.Event(), max_ticks=1)

    assert db.cursor_position() == make_row(2).position
    assert ("CATCH_UP", "COMPLETED") in _log_statuses(db)
    assert _log_statuses(db)[-1] == ("DAEMON", "STOPPED")


def test_run_without_live_polling_returns_after_catch_up() -> None:
    db = FakeLedgerDB()
    source = ScriptedEventSource([make_row(0)])
    daemon = _daemon(db, source, _config(enable_live_polling=False))

    result = daemon.run(threading.Event())

    assert result.final_cursor == make_row(0).position
    assert daemon.poller.cursor is None


def test_poll_once_and_status() -> None:
    db = FakeLedgerDB()
    daemon = _daemon(db, ScriptedEventSource([make_row(0), make_row(1, timestamp_ms=1_800_000_000_000)]))

    empty = daemon.get_status()
    assert empty.cursor == GENESIS_POSITION
    assert empty.stored_event_count == 0
    assert empty.latest_event_timestamp_ms is None

    tick = daemon.poll_once()
    assert tick.outcome == TickOutcome.PERSISTED
    assert ("POLL", "PERSISTED") in _log_statuses(db)

    status = daemon.get_status()
    assert status.cursor == make_row(1).position
    assert status.stored_event_count == 2
    assert status.latest_event_timestamp_ms == 1_800_000_000_000


def test_run_log_failures_do_not_stop_ingestion() -> None:
    db = FakeLedgerDB()
    db.fail_execute("INSERT INTO indexer_run_log", times=100)
    daemon = _daemon(db, ScriptedEventSource([make_row(0)]), _config(enable_live_polling=False))

    result = daemon.run(threading.Event())

    assert result.final_cursor == make_row(0).position
    assert db.run_log == []


def test_config_is_frozen() -> None:
    cfg = _config()
    assert replace(cfg, batch_limit=7).batch_limit == 7
    with pytest.raises(FrozenInstanceError):
        cfg.batch_limit = 3  # type: ignore[misc]
