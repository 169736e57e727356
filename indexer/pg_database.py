"""psycopg adapter implementing the indexer DB protocols."""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional, Sequence

import psycopg
from psycopg import Connection
from psycopg.rows import dict_row


_NAMED_PARAM_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


def _convert_named_params(sql: str) -> str:
    """Convert :named params to psycopg %(named)s format."""
    return _NAMED_PARAM_RE.sub(r"%(\1)s", sql)


def connect(
    *,
    dsn: str | None = None,
    host: str | None = None,
    port: str | int | None = None,
    dbname: str | None = None,
    user: str | None = None,
    password: str | None = None,
) -> Connection[Any]:
    """Open an autocommit connection; transactions are driven explicitly by the adapter."""
    if dsn:
        return psycopg.connect(dsn, autocommit=True)
    return psycopg.connect(
        host=host,
        port=port,
        dbname=dbname,
        user=user,
        password=password,
        autocommit=True,
    )


class PsycopgIndexerDB:
    """Adapter over a psycopg connection with explicit BEGIN/COMMIT/ROLLBACK.

    The connection is expected to run in autocommit mode so that statements
    outside ``begin()``/``commit()`` take effect immediately.
    """

    def __init__(self, conn: Connection[Any]) -> None:
        self.conn = conn
        self._tx_started = False

    @property
    def in_transaction(self) -> bool:
        return self._tx_started

    def _run(self, statement: str) -> None:
        with self.conn.cursor() as cur:
            cur.execute(statement)

    def begin(self) -> None:
        if self._tx_started:
            return
        self._run("BEGIN")
        self._tx_started = True

    def commit(self) -> None:
        if not self._tx_started:
            return
        try:
            self._run("COMMIT")
        finally:
            self._tx_started = False

    def rollback(self) -> None:
        if not self._tx_started:
            return
        try:
            self._run("ROLLBACK")
        finally:
            self._tx_started = False

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        converted = _convert_named_params(sql)
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(converted, dict(params))
            return [dict(row) for row in cur.fetchall()]

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        converted = _convert_named_params(sql)
        with self.conn.cursor() as cur:
            cur.execute(converted, dict(params))
