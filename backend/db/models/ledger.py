"""Durable vault event log, ingestion cursor, and indexer run log model definitions."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    CHAR,
    BigInteger,
    CheckConstraint,
    DateTime,
    Identity,
    Index,
    Integer,
    PrimaryKeyConstraint,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base


class LedgerEvent(Base):
    """Append-only ledger event row keyed by (txn_digest, event_seq)."""

    __tablename__ = "ledger_event"
    __table_args__ = (
        PrimaryKeyConstraint("txn_digest", "event_seq", name="pk_ledger_event"),
        CheckConstraint("event_seq >= 0", name="ck_ledger_event_seq_nonneg"),
        CheckConstraint("timestamp_ms >= 0", name="ck_ledger_event_timestamp_nonneg"),
        CheckConstraint("length(btrim(txn_digest)) > 0", name="ck_ledger_event_digest_not_blank"),
        CheckConstraint("length(btrim(event_type)) > 0", name="ck_ledger_event_type_not_blank"),
        Index("idx_ledger_event_position", "event_seq", "txn_digest"),
        Index("idx_ledger_event_module_type", "package_id", "txn_module", "event_type"),
    )

    txn_digest: Mapped[str] = mapped_column(Text, nullable=False)
    event_seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    package_id: Mapped[str] = mapped_column(Text, nullable=False)
    txn_module: Mapped[str] = mapped_column(Text, nullable=False)
    sender: Mapped[str | None] = mapped_column(Text)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payload_json: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    ingested_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class IndexerCursor(Base):
    """Singleton ingestion cursor; the last persisted ledger position."""

    __tablename__ = "indexer_cursor"
    __table_args__ = (
        PrimaryKeyConstraint("cursor_id", name="pk_indexer_cursor"),
        CheckConstraint("cursor_id = 1", name="ck_indexer_cursor_singleton"),
        CheckConstraint("last_event_seq >= -1", name="ck_indexer_cursor_seq_range"),
    )

    cursor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    last_txn_digest: Mapped[str] = mapped_column(Text, nullable=False)
    last_event_seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class IndexerRunLog(Base):
    __tablename__ = "indexer_run_log"
    __table_args__ = (
        PrimaryKeyConstraint("run_log_id", name="pk_indexer_run_log"),
        CheckConstraint("length(btrim(event_type)) > 0", name="ck_indexer_run_log_type_not_blank"),
        CheckConstraint("length(btrim(status)) > 0", name="ck_indexer_run_log_status_not_blank"),
    )

    run_log_id: Mapped[int] = mapped_column(BigInteger, Identity(always=True), nullable=False)
    event_ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    row_hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)
