"""Schema contract alignment checks between ORM metadata and the migration DDL."""

from __future__ import annotations

import importlib.util
from pathlib import Path
import re
import sys
import types

import pytest

import backend.db.models  # noqa: F401  # Ensure all mapped classes are registered.
from backend.db.base import Base


MIGRATION_PATH = Path(__file__).resolve().parents[1] / "backend" / "db" / "migrations" / "versions" / "0001_initial_schema.py"


def _migration_table_columns(monkeypatch: pytest.MonkeyPatch) -> dict[str, set[str]]:
    fake_alembic = types.ModuleType("alembic")
    fake_alembic.op = types.SimpleNamespace(execute=lambda _statement: None)
    monkeypatch.setitem(sys.modules, "alembic", fake_alembic)
    spec = importlib.util.spec_from_file_location("migration_0001_contract", MIGRATION_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    pattern = re.compile(r"CREATE TABLE (\w+) \((.*)\);", re.S)
    tables: dict[str, set[str]] = {}
    for statement in module.TABLE_DDL:
        match = pattern.search(statement)
        assert match is not None, statement
        table_name, body = match.groups()
        columns: set[str] = set()
        for raw_line in body.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("CONSTRAINT"):
                continue
            columns.add(line.split()[0].rstrip(","))
        tables[table_name] = columns
    return tables


def test_orm_tables_and_columns_match_migration(monkeypatch: pytest.MonkeyPatch) -> None:
    ddl = _migration_table_columns(monkeypatch)
    mapped_tables = Base.metadata.tables

    assert sorted(ddl) == sorted(mapped_tables)
    for table_name, columns in ddl.items():
        orm_columns = {column.name for column in mapped_tables[table_name].columns}
        assert orm_columns == columns, table_name


def test_orm_primary_keys_match_event_identity() -> None:
    tables = Base.metadata.tables
    assert [column.name for column in tables["ledger_event"].primary_key.columns] == ["txn_digest", "event_seq"]
    assert [column.name for column in tables["indexer_cursor"].primary_key.columns] == ["cursor_id"]
    assert tables["ledger_event"].c.sender.nullable is True
    assert tables["ledger_event"].c.payload_json.nullable is False
