"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.ledger import IndexerCursor, IndexerRunLog, LedgerEvent

logger = logging.getLogger(__name__)

__all__ = [
    "IndexerCursor",
    "IndexerRunLog",
    "LedgerEvent",
]
