"""Sui JSON-RPC adapter for paginated Move module event queries."""

from __future__ import annotations

from http.client import HTTPException
import json
import logging
from typing import Any, Callable, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from indexer.errors import RemoteError, TransientNetworkError
from indexer.ledger_source import EventOrder, EventPage, LedgerEventRow, ModuleFilter
from indexer.position import Position

logger = logging.getLogger(__name__)

SUI_FULLNODE_URLS: dict[str, str] = {
    "mainnet": "https://fullnode.mainnet.sui.io:443",
    "testnet": "https://fullnode.testnet.sui.io:443",
    "devnet": "https://fullnode.devnet.sui.io:443",
    "localnet": "http://127.0.0.1:9000",
}


def fullnode_url(network: str) -> str:
    """Resolve the public full node URL for a Sui network name."""
    try:
        return SUI_FULLNODE_URLS[network]
    except KeyError as exc:
        raise ValueError(f"Unknown Sui network: {network}") from exc


class SuiJsonRpcEventSource:
    """Single-shot ``suix_queryEvents`` client; no retries, callers own the policy."""

    def __init__(
        self,
        *,
        rpc_url: str,
        timeout_seconds: float = 20.0,
        requester: Optional[Callable[[str, list[Any]], Any]] = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._timeout_seconds = timeout_seconds
        self._requester = requester
        self._request_id = 0
        self._call_count = 0

    @property
    def call_count(self) -> int:
        """Return remote call count for progress logging."""
        return self._call_count

    def _rpc(self, method: str, params: list[Any]) -> Any:
        self._call_count += 1
        if self._requester is not None:
            return self._requester(method, params)

        self._request_id += 1
        body = json.dumps(
            {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        ).encode("utf-8")
        request = Request(
            url=self._rpc_url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                payload = response.read()
        except HTTPError as exc:
            if exc.code >= 500 or exc.code == 429:
                raise TransientNetworkError(f"{method} HTTP {exc.code}") from exc
            raise RemoteError(f"{method} HTTP {exc.code}") from exc
        except (URLError, TimeoutError, ConnectionError) as exc:
            raise TransientNetworkError(f"{method} transport failure: {exc}") from exc
        except HTTPException as exc:
            raise RemoteError(f"{method} truncated or malformed HTTP response: {type(exc).__name__}") from exc

        try:
            envelope = json.loads(payload.decode("utf-8"))
        except ValueError as exc:
            raise RemoteError(f"{method} returned non-JSON body") from exc
        if not isinstance(envelope, dict):
            raise RemoteError(f"{method} returned unexpected envelope type {type(envelope).__name__}")
        if envelope.get("error") is not None:
            error = envelope["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise RemoteError(f"{method} JSON-RPC error: {message}")
        if "result" not in envelope:
            raise RemoteError(f"{method} response has no result")
        return envelope["result"]

    @staticmethod
    def _parse_position(raw: Any, *, context: str) -> Position:
        if not isinstance(raw, Mapping):
            raise RemoteError(f"{context}: event id is not an object")
        try:
            return Position(event_seq=int(str(raw["eventSeq"])), txn_digest=str(raw["txDigest"]))
        except (KeyError, ValueError) as exc:
            raise RemoteError(f"{context}: invalid event id {raw!r}") from exc

    @classmethod
    def _parse_event(cls, raw: Any) -> LedgerEventRow:
        if not isinstance(raw, Mapping):
            raise RemoteError("event entry is not an object")
        position = cls._parse_position(raw.get("id"), context="event")
        try:
            timestamp_ms = int(str(raw["timestampMs"]))
            event_type = str(raw["type"])
        except (KeyError, ValueError) as exc:
            raise RemoteError(f"event {position.short()} missing type or timestamp") from exc
        payload = raw.get("parsedJson")
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            # Non-struct events still need a document; keep the raw value addressable.
            payload = {"value": payload}
        sender = raw.get("sender")
        return LedgerEventRow(
            event_seq=position.event_seq,
            txn_digest=position.txn_digest,
            package_id=str(raw.get("packageId", "")),
            txn_module=str(raw.get("transactionModule", "")),
            sender=None if sender is None else str(sender),
            event_type=event_type,
            timestamp_ms=timestamp_ms,
            payload=dict(payload),
        )

    def query_events(
        self,
        module_filter: ModuleFilter,
        cursor: Optional[Position],
        limit: int,
        order: EventOrder,
    ) -> EventPage:
        rpc_cursor = None
        if cursor is not None and not cursor.is_genesis:
            rpc_cursor = {"txDigest": cursor.txn_digest, "eventSeq": str(cursor.event_seq)}
        result = self._rpc(
            "suix_queryEvents",
            [module_filter.to_query(), rpc_cursor, int(limit), order == EventOrder.DESCENDING],
        )
        if not isinstance(result, Mapping) or not isinstance(result.get("data"), list):
            raise RemoteError("suix_queryEvents result has no data list")

        events = tuple(self._parse_event(item) for item in result["data"])
        raw_next = result.get("nextCursor")
        next_cursor = None if raw_next is None else self._parse_position(raw_next, context="nextCursor")
        return EventPage(
            events=events,
            has_next_page=bool(result.get("hasNextPage", False)),
            next_cursor=next_cursor,
        )
