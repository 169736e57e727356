"""Total order over ledger event positions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

GENESIS_TXN_DIGEST = "0x" + "0" * 64
GENESIS_EVENT_SEQ = -1


@dataclass(frozen=True)
class Position:
    """Point in the remote event stream: ``(event sequence, transaction digest)``."""

    event_seq: int
    txn_digest: str

    @property
    def is_genesis(self) -> bool:
        return self.txn_digest == GENESIS_TXN_DIGEST

    def short(self) -> str:
        """Compact rendering for log lines."""
        return f"{self.txn_digest[:10]}…#{self.event_seq}"


GENESIS_POSITION = Position(event_seq=GENESIS_EVENT_SEQ, txn_digest=GENESIS_TXN_DIGEST)


def compare_positions(a: Optional[Position], b: Optional[Position]) -> int:
    """Return -1, 0 or 1; sequence first, digest breaks ties, ``None`` sorts first."""
    if a is None or b is None:
        if a is None and b is None:
            return 0
        return 1 if a is not None else -1
    if a.event_seq != b.event_seq:
        return -1 if a.event_seq < b.event_seq else 1
    if a.txn_digest != b.txn_digest:
        return -1 if a.txn_digest < b.txn_digest else 1
    return 0


def is_after(candidate: Optional[Position], reference: Optional[Position]) -> bool:
    return compare_positions(candidate, reference) > 0


def is_at_or_before(candidate: Optional[Position], reference: Optional[Position]) -> bool:
    return compare_positions(candidate, reference) <= 0


def position_sort_key(position: Position) -> tuple[int, str]:
    """Sort key consistent with :func:`compare_positions`."""
    return (position.event_seq, position.txn_digest)
