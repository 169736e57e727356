"""Initial schema for the vault ledger indexer."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from alembic import op

logger = logging.getLogger(__name__)

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


TABLE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE ledger_event (
        txn_digest TEXT NOT NULL,
        event_seq BIGINT NOT NULL,
        package_id TEXT NOT NULL,
        txn_module TEXT NOT NULL,
        sender TEXT,
        event_type TEXT NOT NULL,
        timestamp_ms BIGINT NOT NULL,
        payload_json JSONB NOT NULL,
        ingested_at_utc TIMESTAMPTZ NOT NULL,
        CONSTRAINT pk_ledger_event PRIMARY KEY (txn_digest, event_seq),
        CONSTRAINT ck_ledger_event_seq_nonneg CHECK (event_seq >= 0),
        CONSTRAINT ck_ledger_event_timestamp_nonneg CHECK (timestamp_ms >= 0),
        CONSTRAINT ck_ledger_event_digest_not_blank CHECK (length(btrim(txn_digest)) > 0),
        CONSTRAINT ck_ledger_event_type_not_blank CHECK (length(btrim(event_type)) > 0)
    );
    """,
    """
    CREATE TABLE indexer_cursor (
        cursor_id INTEGER NOT NULL,
        last_txn_digest TEXT NOT NULL,
        last_event_seq BIGINT NOT NULL,
        updated_at_utc TIMESTAMPTZ NOT NULL,
        CONSTRAINT pk_indexer_cursor PRIMARY KEY (cursor_id),
        CONSTRAINT ck_indexer_cursor_singleton CHECK (cursor_id = 1),
        CONSTRAINT ck_indexer_cursor_seq_range CHECK (last_event_seq >= -1)
    );
    """,
    """
    CREATE TABLE indexer_run_log (
        run_log_id BIGINT GENERATED ALWAYS AS IDENTITY,
        event_ts_utc TIMESTAMPTZ NOT NULL,
        event_type TEXT NOT NULL,
        status TEXT NOT NULL,
        details TEXT NOT NULL,
        row_hash CHAR(64) NOT NULL,
        CONSTRAINT pk_indexer_run_log PRIMARY KEY (run_log_id),
        CONSTRAINT ck_indexer_run_log_type_not_blank CHECK (length(btrim(event_type)) > 0),
        CONSTRAINT ck_indexer_run_log_status_not_blank CHECK (length(btrim(status)) > 0)
    );
    """,
)

INDEX_DDL: tuple[str, ...] = (
    "CREATE INDEX idx_ledger_event_position ON ledger_event (event_seq, txn_digest);",
    "CREATE INDEX idx_ledger_event_module_type ON ledger_event (package_id, txn_module, event_type);",
    "CREATE INDEX idx_indexer_run_log_type_ts ON indexer_run_log (event_type, event_ts_utc DESC);",
)

APPEND_ONLY_DDL: tuple[str, ...] = (
    """
    CREATE OR REPLACE FUNCTION fn_enforce_append_only()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        RAISE EXCEPTION 'append-only violation on table %, operation % is not allowed', TG_TABLE_NAME, TG_OP;
    END;
    $$;
    """,
    """
    CREATE TRIGGER trg_ledger_event_append_only
    BEFORE UPDATE OR DELETE ON ledger_event
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
    """
    CREATE TRIGGER trg_indexer_run_log_append_only
    BEFORE UPDATE OR DELETE ON indexer_run_log
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
)


def _execute_all(statements: Sequence[str]) -> None:
    """Execute an ordered sequence of SQL statements."""

    for statement in statements:
        try:
            op.execute(statement)
        except Exception:
            logger.exception("Migration statement failed.")
            raise


def upgrade() -> None:
    """Apply the initial indexer schema migration."""

    logger.info("Starting initial schema migration upgrade.")
    _execute_all(TABLE_DDL)
    _execute_all(INDEX_DDL)
    _execute_all(APPEND_ONLY_DDL)
    logger.info("Completed initial schema migration upgrade.")


def downgrade() -> None:
    """Revert the initial indexer schema migration."""

    logger.info("Starting initial schema migration downgrade.")
    _execute_all(
        (
            "DROP TRIGGER IF EXISTS trg_indexer_run_log_append_only ON indexer_run_log;",
            "DROP TRIGGER IF EXISTS trg_ledger_event_append_only ON ledger_event;",
            "DROP FUNCTION IF EXISTS fn_enforce_append_only();",
            "DROP TABLE IF EXISTS indexer_run_log;",
            "DROP TABLE IF EXISTS indexer_cursor;",
            "DROP TABLE IF EXISTS ledger_event;",
        )
    )
    logger.info("Completed initial schema migration downgrade.")
