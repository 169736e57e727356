"""Typed vault events decoded from raw ledger rows."""

from __future__ import annotations

from dataclasses import dataclass
import enum
import logging
from typing import Any, Iterable, Mapping, Optional, Union

from indexer.errors import IndexerError, InvariantViolation, MalformedPayloadError, UnknownReferenceError
from indexer.ledger_source import LedgerEventRow
from indexer.position import Position

logger = logging.getLogger(__name__)

MAX_WEIGHT_BPS = 10_000
DEFAULT_VAULT_NAME = "Unnamed Vault"


class VaultEventKind(str, enum.Enum):
    """Move event struct names emitted by the vault module."""

    VAULT_CREATED = "VaultCreated"
    COIN_DEPOSITED = "CoinDeposited"
    COIN_WITHDRAWN = "CoinWithdrawn"
    POLICY_SET = "PolicySet"
    TOKEN_WEIGHTS_SET = "TokenWeightsSet"
    VAULT_TRANSFERRED = "VaultTransferred"


class WarningKind(str, enum.Enum):
    """Non-fatal signals raised while decoding or folding the event log."""

    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"
    UNKNOWN_VAULT = "UNKNOWN_VAULT"
    UNKNOWN_COIN_TYPE = "UNKNOWN_COIN_TYPE"
    DUPLICATE_CREATION = "DUPLICATE_CREATION"
    NEGATIVE_BALANCE_CLAMPED = "NEGATIVE_BALANCE_CLAMPED"


@dataclass(frozen=True)
class ProjectionWarning:
    kind: WarningKind
    position: Position
    vault_id: Optional[str]
    message: str

    def as_error(self) -> IndexerError:
        """Return the taxonomy error this warning stands in for."""
        return _WARNING_ERRORS[self.kind](f"{self.position.short()}: {self.message}")


_WARNING_ERRORS: dict[WarningKind, type[IndexerError]] = {
    WarningKind.MALFORMED_PAYLOAD: MalformedPayloadError,
    WarningKind.UNKNOWN_VAULT: UnknownReferenceError,
    WarningKind.UNKNOWN_COIN_TYPE: UnknownReferenceError,
    WarningKind.DUPLICATE_CREATION: InvariantViolation,
    WarningKind.NEGATIVE_BALANCE_CLAMPED: InvariantViolation,
}


@dataclass(frozen=True)
class VaultPolicy:
    rebalance_type: Optional[str]
    interval_days: int
    threshold_bps: int


EMPTY_POLICY = VaultPolicy(rebalance_type=None, interval_days=0, threshold_bps=0)


@dataclass(frozen=True)
class VaultCreated:
    vault_id: str
    position: Position
    timestamp_ms: int
    name: str
    creator: str
    policy: VaultPolicy


@dataclass(frozen=True)
class CoinDeposited:
    vault_id: str
    position: Position
    timestamp_ms: int
    coin_type: str
    amount: int


@dataclass(frozen=True)
class CoinWithdrawn:
    vault_id: str
    position: Position
    timestamp_ms: int
    coin_type: str
    amount: int


@dataclass(frozen=True)
class PolicySet:
    vault_id: str
    position: Position
    timestamp_ms: int
    policy: VaultPolicy


@dataclass(frozen=True)
class TokenWeightsSet:
    vault_id: str
    position: Position
    timestamp_ms: int
    coin_types: tuple[str, ...]
    weights_bps: tuple[int, ...]


@dataclass(frozen=True)
class VaultTransferred:
    vault_id: str
    position: Position
    timestamp_ms: int
    to: str


VaultEvent = Union[VaultCreated, CoinDeposited, CoinWithdrawn, PolicySet, TokenWeightsSet, VaultTransferred]


def event_kind(event_type: str) -> Optional[VaultEventKind]:
    """Map ``<package>::<module>::<Name><...>`` to a known kind, else ``None``."""
    name = event_type.split("<", 1)[0].rsplit("::", 1)[-1]
    try:
        return VaultEventKind(name)
    except ValueError:
        return None


def qualified_event_types(package_id: str, module_name: str) -> tuple[str, ...]:
    return tuple(f"{package_id}::{module_name}::{kind.value}" for kind in VaultEventKind)


def _require_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedPayloadError(f"missing or empty field {key!r}")
    return value


def _as_uint(value: Any, *, field_name: str, default: Optional[int] = None) -> int:
    if value is None or value == "":
        if default is None:
            raise MalformedPayloadError(f"missing integer field {field_name!r}")
        return default
    if isinstance(value, bool) or isinstance(value, float):
        raise MalformedPayloadError(f"field {field_name!r} is not an integer: {value!r}")
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        raise MalformedPayloadError(f"field {field_name!r} is not an integer: {value!r}") from exc
    if parsed < 0:
        raise MalformedPayloadError(f"field {field_name!r} is negative: {parsed}")
    return parsed


def _policy(payload: Mapping[str, Any]) -> VaultPolicy:
    rebalance_type = payload.get("rebalance_type")
    return VaultPolicy(
        rebalance_type=None if rebalance_type is None else str(rebalance_type),
        interval_days=_as_uint(payload.get("rebalance_interval_days"), field_name="rebalance_interval_days", default=0),
        threshold_bps=_as_uint(payload.get("rebalance_threshold_bps"), field_name="rebalance_threshold_bps", default=0),
    )


def _weights(payload: Mapping[str, Any]) -> tuple[tuple[str, ...], tuple[int, ...]]:
    coin_types = payload.get("target_coin_types") or []
    weights = payload.get("target_weights_bps") or []
    if not isinstance(coin_types, list) or not isinstance(weights, list):
        raise MalformedPayloadError("target_coin_types and target_weights_bps must be arrays")
    parsed: list[int] = []
    for index in range(len(coin_types)):
        raw = weights[index] if index < len(weights) else None
        weight = _as_uint(raw, field_name=f"target_weights_bps[{index}]", default=0)
        if weight > MAX_WEIGHT_BPS:
            raise MalformedPayloadError(f"weight {weight} exceeds {MAX_WEIGHT_BPS} bps")
        parsed.append(weight)
    return tuple("" if item is None else str(item) for item in coin_types), tuple(parsed)


def decode_vault_event(row: LedgerEventRow) -> VaultEvent:
    """Validate and decode one ledger row into its vault event variant."""
    kind = event_kind(row.event_type)
    if kind is None:
        raise MalformedPayloadError(f"unsupported event type {row.event_type!r}")

    payload = row.payload
    vault_id = _require_str(payload, "vault_id")
    position = row.position
    ts = row.timestamp_ms

    if kind is VaultEventKind.VAULT_CREATED:
        policy_payload = payload.get("policy") or {}
        if not isinstance(policy_payload, Mapping):
            raise MalformedPayloadError("policy must be an object")
        name = payload.get("name")
        return VaultCreated(
            vault_id=vault_id,
            position=position,
            timestamp_ms=ts,
            name=str(name) if name else DEFAULT_VAULT_NAME,
            creator=_require_str(payload, "creator"),
            policy=_policy(policy_payload),
        )
    if kind is VaultEventKind.COIN_DEPOSITED:
        return CoinDeposited(
            vault_id=vault_id,
            position=position,
            timestamp_ms=ts,
            coin_type=_require_str(payload, "coin_type"),
            amount=_as_uint(payload.get("amount"), field_name="amount"),
        )
    if kind is VaultEventKind.COIN_WITHDRAWN:
        return CoinWithdrawn(
            vault_id=vault_id,
            position=position,
            timestamp_ms=ts,
            coin_type=_require_str(payload, "coin_type"),
            amount=_as_uint(payload.get("amount"), field_name="amount"),
        )
    if kind is VaultEventKind.POLICY_SET:
        return PolicySet(vault_id=vault_id, position=position, timestamp_ms=ts, policy=_policy(payload))
    if kind is VaultEventKind.TOKEN_WEIGHTS_SET:
        coin_types, weights = _weights(payload)
        return TokenWeightsSet(
            vault_id=vault_id,
            position=position,
            timestamp_ms=ts,
            coin_types=coin_types,
            weights_bps=weights,
        )
    return VaultTransferred(vault_id=vault_id, position=position, timestamp_ms=ts, to=_require_str(payload, "to"))


@dataclass(frozen=True)
class DecodedLog:
    events: tuple[VaultEvent, ...]
    warnings: tuple[ProjectionWarning, ...]


def decode_vault_log(rows: Iterable[LedgerEventRow]) -> DecodedLog:
    """Decode rows in order, skipping (and reporting) malformed payloads."""
    events: list[VaultEvent] = []
    warnings: list[ProjectionWarning] = []
    for row in rows:
        try:
            events.append(decode_vault_event(row))
        except MalformedPayloadError as exc:
            vault_id = row.payload.get("vault_id") if isinstance(row.payload, Mapping) else None
            warning = ProjectionWarning(
                kind=WarningKind.MALFORMED_PAYLOAD,
                position=row.position,
                vault_id=vault_id if isinstance(vault_id, str) else None,
                message=f"{row.event_type}: {exc}",
            )
            logger.warning("Skipping malformed event at %s: %s", row.position.short(), warning.message)
            warnings.append(warning)
    return DecodedLog(events=tuple(events), warnings=tuple(warnings))
