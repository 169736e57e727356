"""Database package: ORM models and Alembic migrations for the indexer."""

from __future__ import annotations

import logging

from backend.db.base import Base, metadata
from backend.db import models
from backend.db.models import IndexerCursor, IndexerRunLog, LedgerEvent

logger = logging.getLogger(__name__)

__all__ = ["Base", "IndexerCursor", "IndexerRunLog", "LedgerEvent", "metadata", "models"]
