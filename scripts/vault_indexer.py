#!/usr/bin/env python3
"""Vault ledger indexer CLI: ingestion daemon, status, and vault queries."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
import signal
import sys
import threading
from typing import Any, Sequence

import psycopg

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from indexer.common import ms_to_utc, utc_iso
from indexer.errors import CatchUpError, StorageUnavailableError
from indexer.indexer_config import IndexerConfig, load_indexer_config
from indexer.indexer_daemon import IndexerDaemon, IndexerStatus
from indexer.pg_database import PsycopgIndexerDB
from indexer.position import Position
from indexer.sui_rpc_source import SuiJsonRpcEventSource
from indexer.vault_query import VaultFilter, VaultQueryService

logger = logging.getLogger("vault_indexer")


def _resolve_connection(args: argparse.Namespace) -> psycopg.Connection[Any]:
    if args.dsn:
        return psycopg.connect(args.dsn, autocommit=True)

    host = args.host or os.getenv("DB_HOST")
    port = args.port or os.getenv("DB_PORT")
    dbname = args.dbname or os.getenv("DB_NAME")
    user = args.user or os.getenv("DB_USER")
    password = args.password or os.getenv("DB_PASSWORD")

    missing = [
        key
        for key, value in (("host", host), ("port", port), ("dbname", dbname), ("user", user), ("password", password))
        if not value
    ]
    if missing:
        raise SystemExit(
            "Missing DB connection args. Provide --dsn or set --host/--port/--dbname/--user/--password "
            f"(missing: {', '.join(missing)})."
        )

    return psycopg.connect(host=host, port=port, dbname=dbname, user=user, password=password, autocommit=True)


def _build_daemon(cfg: IndexerConfig, db: PsycopgIndexerDB) -> IndexerDaemon:
    source = SuiJsonRpcEventSource(rpc_url=cfg.sui_rpc_url, timeout_seconds=float(cfg.rpc_timeout_seconds))
    return IndexerDaemon(db=db, source=source, config=cfg)


def _position_payload(position: Position | None) -> dict[str, Any] | None:
    if position is None:
        return None
    return {"event_seq": position.event_seq, "txn_digest": position.txn_digest}


def _status_payload(status: IndexerStatus) -> dict[str, Any]:
    latest_ms = status.latest_event_timestamp_ms
    return {
        "cursor": _position_payload(status.cursor),
        "stored_event_count": status.stored_event_count,
        "latest_event_timestamp_ms": latest_ms,
        "latest_event_at_utc": None if latest_ms is None else utc_iso(ms_to_utc(latest_ms)),
    }


def _install_stop_handlers(stop_event: threading.Event) -> None:
    def _handle(signum: int, _frame: Any) -> None:
        logger.info("Received signal %d; stopping after in-flight tick", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Vault ledger indexer CLI")
    parser.add_argument("--dsn", help="PostgreSQL DSN (optional)")
    parser.add_argument("--host", help="DB host")
    parser.add_argument("--port", help="DB port")
    parser.add_argument("--dbname", help="DB name")
    parser.add_argument("--user", help="DB user")
    parser.add_argument("--password", help="DB password")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_cmd = subparsers.add_parser("run", help="Catch up, then poll until interrupted")
    run_cmd.add_argument("--max-ticks", type=int, default=None)

    subparsers.add_parser("catch-up", help="Replay the backlog to the ledger head and exit")
    subparsers.add_parser("poll-once", help="Run a single live-poll tick")
    subparsers.add_parser("status", help="Show cursor and stored-event summary")

    vaults_cmd = subparsers.add_parser("vaults", help="List vault aggregates")
    vaults_cmd.add_argument("--creator", default=None)
    vaults_cmd.add_argument("--admin", default=None)
    vaults_cmd.add_argument("--coin-type", default=None)

    vault_cmd = subparsers.add_parser("vault", help="Show one vault aggregate")
    vault_cmd.add_argument("vault_id")

    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, sort_keys=True))


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = load_indexer_config()
    conn = _resolve_connection(args)
    db = PsycopgIndexerDB(conn)
    try:
        if args.command in ("vaults", "vault"):
            service = VaultQueryService(db, cfg.module_filter)
            try:
                if args.command == "vaults":
                    vault_filter = VaultFilter(creator=args.creator, admin=args.admin, coin_type=args.coin_type)
                    _print_json([view.to_document() for view in service.list_vault_aggregates(vault_filter)])
                    return 0
                view = service.get_vault_aggregate(args.vault_id)
            except StorageUnavailableError:
                _print_json({"error": "storage unavailable"})
                return 3
            if view is None:
                _print_json({"error": "not found"})
                return 1
            _print_json(view.to_document())
            return 0

        daemon = _build_daemon(cfg, db)

        if args.command == "status":
            _print_json(_status_payload(daemon.get_status()))
            return 0

        if args.command == "poll-once":
            result = daemon.poll_once()
            _print_json(
                {
                    "outcome": result.outcome.value,
                    "events_persisted": result.events_persisted,
                    "cursor": _position_payload(result.cursor),
                }
            )
            return 0

        if args.command in ("catch-up", "run"):
            try:
                if args.command == "catch-up":
                    result = daemon.run_catch_up()
                else:
                    stop_event = threading.Event()
                    _install_stop_handlers(stop_event)
                    result = daemon.run(stop_event, max_ticks=args.max_ticks)
            except CatchUpError as exc:
                logger.error("Catch-up failed; not starting live polling: %s", exc)
                _print_json({"error": "catch-up failed", "detail": str(exc)})
                return 2
            _print_json(
                {
                    "backlog_found": result.backlog_found,
                    "events_persisted": result.events_persisted,
                    "final_cursor": _position_payload(result.final_cursor),
                    "pages_fetched": result.pages_fetched,
                }
            )
            return 0

        raise SystemExit(f"Unknown command: {args.command}")
    except Exception:
        db.rollback()
        raise
    finally:
        conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
