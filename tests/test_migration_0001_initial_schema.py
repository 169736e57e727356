"""Unit tests for initial Alembic migration orchestration."""

from __future__ import annotations

import importlib.util
from pathlib import Path
import sys
import types
from typing import Any

import pytest


MIGRATION_PATH = (
    Path(__file__).resolve().parents[1]
    / "backend"
    / "db"
    / "migrations"
    / "versions"
    / "0001_initial_schema.py"
)


class _OpStub:
    def __init__(self, *, fail_on: str | None = None) -> None:
        self.calls: list[str] = []
        self.fail_on = fail_on

    def execute(self, statement: str) -> None:
        self.calls.append(statement)
        if self.fail_on and self.fail_on in statement:
            raise RuntimeError("forced migration failure")


def _load_migration_module(module_name: str, op_stub: _OpStub, monkeypatch: pytest.MonkeyPatch) -> Any:
    fake_alembic = types.ModuleType("alembic")
    fake_alembic.op = op_stub
    monkeypatch.setitem(sys.modules, "alembic", fake_alembic)

    spec = importlib.util.spec_from_file_location(module_name, MIGRATION_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


def test_revision_metadata_constants(monkeypatch: pytest.MonkeyPatch) -> None:
    module = _load_migration_module("migration_0001_meta", _OpStub(), monkeypatch)
    assert module.revision == "0001_initial_schema"
    assert module.down_revision is None
    assert module.branch_labels is None
    assert module.depends_on is None


def test_execute_all_logs_and_reraises(monkeypatch: pytest.MonkeyPatch) -> None:
    op_stub = _OpStub(fail_on="SELECT 2")
    module = _load_migration_module("migration_0001_execute_error", op_stub, monkeypatch)

    seen: list[str] = []
    monkeypatch.setattr(module.logger, "exception", lambda message: seen.append(message))
    with pytest.raises(RuntimeError, match="forced migration failure"):
        module._execute_all(("SELECT 1;", "SELECT 2;", "SELECT 3;"))

    assert op_stub.calls == ["SELECT 1;", "SELECT 2;"]
    assert seen == ["Migration statement failed."]


def test_upgrade_runs_tables_indexes_then_append_only_guards(monkeypatch: pytest.MonkeyPatch) -> None:
    op_stub = _OpStub()
    module = _load_migration_module("migration_0001_upgrade", op_stub, monkeypatch)

    module.upgrade()

    expected = [*module.TABLE_DDL, *module.INDEX_DDL, *module.APPEND_ONLY_DDL]
    assert op_stub.calls == expected
    created = " ".join(module.TABLE_DDL)
    for table in ("ledger_event", "indexer_cursor", "indexer_run_log"):
        assert f"CREATE TABLE {table}" in created
    assert "PRIMARY KEY (txn_digest, event_seq)" in created
    assert any("trg_ledger_event_append_only" in statement for statement in module.APPEND_ONLY_DDL)


def test_downgrade_drops_guards_before_tables(monkeypatch: pytest.MonkeyPatch) -> None:
    op_stub = _OpStub()
    module = _load_migration_module("migration_0001_downgrade", op_stub, monkeypatch)

    module.downgrade()

    drops = op_stub.calls
    assert drops[0].startswith("DROP TRIGGER IF EXISTS trg_indexer_run_log_append_only")
    assert drops.index("DROP FUNCTION IF EXISTS fn_enforce_append_only();") < drops.index(
        "DROP TABLE IF EXISTS ledger_event;"
    )
    assert drops[-1] == "DROP TABLE IF EXISTS ledger_event;"
