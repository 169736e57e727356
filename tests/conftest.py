"""Pytest fixtures shared across unit and integration tests."""

from __future__ import annotations

import importlib.util
import os
from pathlib import Path
from typing import Any
from uuid import uuid4

import psycopg
import pytest

from indexer.pg_database import PsycopgIndexerDB

MIGRATION_PATH = Path(__file__).resolve().parents[1] / "backend" / "db" / "migrations" / "versions" / "0001_initial_schema.py"


def _load_migration_ddl() -> tuple[str, ...]:
    spec = importlib.util.spec_from_file_location("migration_0001_ddl", MIGRATION_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return (*module.TABLE_DDL, *module.INDEX_DDL, *module.APPEND_ONLY_DDL)


@pytest.fixture(scope="session")
def pg_conn() -> Any:
    """Session-scoped autocommit psycopg connection for integration tests."""
    host = os.getenv("TEST_DB_HOST")
    port = os.getenv("TEST_DB_PORT")
    dbname = os.getenv("TEST_DB_NAME")
    user = os.getenv("TEST_DB_USER")
    password = os.getenv("TEST_DB_PASSWORD")

    if not all([host, port, dbname, user, password]):
        pytest.skip("Integration DB env vars are missing; set TEST_DB_HOST/PORT/NAME/USER/PASSWORD")

    conn = psycopg.connect(
        host=host,
        port=port,
        dbname=dbname,
        user=user,
        password=password,
        autocommit=True,
    )
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def indexer_db(pg_conn: Any) -> Any:
    """Indexer DB adapter bound to a throwaway schema carrying the migration DDL."""
    schema = f"indexer_test_{uuid4().hex[:12]}"
    with pg_conn.cursor() as cur:
        cur.execute(f"CREATE SCHEMA {schema}")
        cur.execute(f"SET search_path TO {schema}")
        for statement in _load_migration_ddl():
            cur.execute(statement)
    try:
        yield PsycopgIndexerDB(pg_conn)
    finally:
        with pg_conn.cursor() as cur:
            cur.execute(f"DROP SCHEMA {schema} CASCADE")
            cur.execute("SET search_path TO public")
