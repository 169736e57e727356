"""Deterministic fold of the vault event log into aggregate snapshots."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from indexer.common import ms_to_utc, utc_iso
from indexer.vault_events import (
    CoinDeposited,
    CoinWithdrawn,
    PolicySet,
    ProjectionWarning,
    TokenWeightsSet,
    VaultCreated,
    VaultEvent,
    VaultPolicy,
    VaultTransferred,
    WarningKind,
)

logger = logging.getLogger(__name__)

_EMPTY: Mapping[str, int] = MappingProxyType({})


@dataclass(frozen=True)
class VaultAggregate:
    """Current state of one vault, rebuilt from its events."""

    vault_id: str
    name: str
    creator: str
    current_admin: str
    balances: Mapping[str, int]
    allocations: Mapping[str, int]
    policy: VaultPolicy
    created_at_ms: int
    last_updated_at_ms: int

    @property
    def created_at(self) -> datetime:
        return ms_to_utc(self.created_at_ms)

    @property
    def last_updated_at(self) -> datetime:
        return ms_to_utc(self.last_updated_at_ms)

    def to_document(self) -> dict[str, Any]:
        """Canonical JSON-ready document; amounts are decimal strings."""
        return {
            "id": self.vault_id,
            "name": self.name,
            "creator": self.creator,
            "currentAdmin": self.current_admin,
            "balances": {coin: str(amount) for coin, amount in sorted(self.balances.items())},
            "allocations": {coin: weight for coin, weight in sorted(self.allocations.items())},
            "policy": {
                "rebalanceType": self.policy.rebalance_type,
                "rebalanceIntervalDays": self.policy.interval_days,
                "rebalanceThresholdBps": self.policy.threshold_bps,
            },
            "createdAt": utc_iso(self.created_at),
            "lastUpdatedAt": utc_iso(self.last_updated_at),
        }


@dataclass(frozen=True)
class ProjectionResult:
    vaults: Mapping[str, VaultAggregate]
    warnings: tuple[ProjectionWarning, ...]


def _frozen(values: Mapping[str, int]) -> Mapping[str, int]:
    return MappingProxyType(dict(values))


def _warn(kind: WarningKind, event: VaultEvent, message: str) -> ProjectionWarning:
    logger.warning("Vault %s at %s: %s", event.vault_id, event.position.short(), message)
    return ProjectionWarning(kind=kind, position=event.position, vault_id=event.vault_id, message=message)


def _apply(
    aggregate: Optional[VaultAggregate],
    event: VaultEvent,
) -> tuple[Optional[VaultAggregate], tuple[ProjectionWarning, ...]]:
    """Pure per-vault reducer; returns the next aggregate and any warnings."""
    if isinstance(event, VaultCreated):
        if aggregate is not None:
            return replace(aggregate, last_updated_at_ms=event.timestamp_ms), (
                _warn(WarningKind.DUPLICATE_CREATION, event, "duplicate VaultCreated ignored"),
            )
        return (
            VaultAggregate(
                vault_id=event.vault_id,
                name=event.name,
                creator=event.creator,
                current_admin=event.creator,
                balances=_EMPTY,
                allocations=_EMPTY,
                policy=event.policy,
                created_at_ms=event.timestamp_ms,
                last_updated_at_ms=event.timestamp_ms,
            ),
            (),
        )

    if aggregate is None:
        return None, (
            _warn(
                WarningKind.UNKNOWN_VAULT,
                event,
                f"{type(event).__name__} before VaultCreated; event dropped",
            ),
        )

    if isinstance(event, CoinDeposited):
        balances = dict(aggregate.balances)
        balances[event.coin_type] = balances.get(event.coin_type, 0) + event.amount
        return replace(aggregate, balances=_frozen(balances), last_updated_at_ms=event.timestamp_ms), ()

    if isinstance(event, CoinWithdrawn):
        if event.coin_type not in aggregate.balances:
            return replace(aggregate, last_updated_at_ms=event.timestamp_ms), (
                _warn(
                    WarningKind.UNKNOWN_COIN_TYPE,
                    event,
                    f"withdrawal of {event.coin_type} which was never deposited; balances unchanged",
                ),
            )
        balances = dict(aggregate.balances)
        remaining = balances[event.coin_type] - event.amount
        warnings: tuple[ProjectionWarning, ...] = ()
        if remaining < 0:
            warnings = (
                _warn(
                    WarningKind.NEGATIVE_BALANCE_CLAMPED,
                    event,
                    f"withdrawal of {event.amount} {event.coin_type} exceeds balance "
                    f"{balances[event.coin_type]}; clamped to 0",
                ),
            )
            remaining = 0
        balances[event.coin_type] = remaining
        return replace(aggregate, balances=_frozen(balances), last_updated_at_ms=event.timestamp_ms), warnings

    if isinstance(event, PolicySet):
        return replace(aggregate, policy=event.policy, last_updated_at_ms=event.timestamp_ms), ()

    if isinstance(event, TokenWeightsSet):
        allocations: dict[str, int] = {}
        for coin_type, weight in zip(event.coin_types, event.weights_bps):
            if coin_type:
                allocations[coin_type] = weight
        return replace(aggregate, allocations=_frozen(allocations), last_updated_at_ms=event.timestamp_ms), ()

    if isinstance(event, VaultTransferred):
        return replace(aggregate, current_admin=event.to, last_updated_at_ms=event.timestamp_ms), ()

    raise TypeError(f"Unsupported vault event: {type(event).__name__}")


def apply_vault_event(
    state: Mapping[str, VaultAggregate],
    event: VaultEvent,
) -> tuple[Mapping[str, VaultAggregate], tuple[ProjectionWarning, ...]]:
    """Reducer step: return a new state mapping with ``event`` applied."""
    current = state.get(event.vault_id)
    updated, warnings = _apply(current, event)
    if updated is current:
        return state, warnings
    next_state = dict(state)
    if updated is not None:
        next_state[event.vault_id] = updated
    return MappingProxyType(next_state), warnings


def fold_vault_events(events: Iterable[VaultEvent]) -> ProjectionResult:
    """Fold events (ascending position order) into vault aggregates.

    The accumulator is private to this call, so the in-place updates below are
    equivalent to chaining :func:`apply_vault_event`.
    """
    vaults: dict[str, VaultAggregate] = {}
    warnings: list[ProjectionWarning] = []
    for event in events:
        updated, step_warnings = _apply(vaults.get(event.vault_id), event)
        if updated is not None:
            vaults[event.vault_id] = updated
        warnings.extend(step_warnings)
    return ProjectionResult(vaults=MappingProxyType(vaults), warnings=tuple(warnings))


def project_vaults(events: Iterable[VaultEvent]) -> Mapping[str, VaultAggregate]:
    """Return only the aggregates of :func:`fold_vault_events`."""
    return fold_vault_events(events).vaults
