"""Environment-backed configuration for the vault ledger indexer."""

from __future__ import annotations

from dataclasses import dataclass
import os

from indexer.common import RetryPolicy
from indexer.errors import ConfigError
from indexer.ledger_source import ModuleFilter
from indexer.sui_rpc_source import SUI_FULLNODE_URLS


@dataclass(frozen=True)
class IndexerConfig:
    """Canonical configuration surface for ingestion and projection."""

    vault_package_id: str
    vault_module_name: str
    sui_network: str
    sui_rpc_url: str
    batch_limit: int
    poll_interval_ms: int
    rpc_timeout_seconds: int
    query_attempts: int
    persist_attempts: int
    retry_min_delay_ms: int
    retry_max_delay_ms: int
    enable_live_polling: bool

    @property
    def module_filter(self) -> ModuleFilter:
        return ModuleFilter(package_id=self.vault_package_id, module_name=self.vault_module_name)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0

    def query_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.query_attempts,
            min_delay_seconds=self.retry_min_delay_ms / 1000.0,
            max_delay_seconds=self.retry_max_delay_ms / 1000.0,
        )

    def persist_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.persist_attempts,
            min_delay_seconds=self.retry_min_delay_ms / 1000.0,
            max_delay_seconds=self.retry_max_delay_ms / 1000.0,
        )


_REQUIRED_KEYS: tuple[str, ...] = (
    "VAULT_PACKAGE_ID",
    "VAULT_MODULE_NAME",
    "SUI_NETWORK",
)


def _read_env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None or value.strip() == "":
        raise ConfigError(f"Missing required environment variable: {name}")
    return value.strip()


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Invalid boolean value for {name}: {raw}")


def _read_int(name: str, default: int, *, minimum: int | None = None, maximum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw.strip())
        except ValueError as exc:
            raise ConfigError(f"Invalid integer value for {name}: {raw}") from exc
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got {value}")
    return value


def load_indexer_config() -> IndexerConfig:
    """Load and validate indexer configuration from environment."""
    for key in _REQUIRED_KEYS:
        _read_env(key)

    network = _read_env("SUI_NETWORK").lower()
    if network not in SUI_FULLNODE_URLS:
        raise ConfigError(
            f"SUI_NETWORK must be one of {', '.join(sorted(SUI_FULLNODE_URLS))}, got {network}"
        )

    retry_min_delay_ms = _read_int("INDEXER_RETRY_MIN_DELAY_MS", 1000, minimum=0)
    retry_max_delay_ms = _read_int("INDEXER_RETRY_MAX_DELAY_MS", 30000, minimum=0)
    if retry_max_delay_ms < retry_min_delay_ms:
        raise ConfigError("INDEXER_RETRY_MAX_DELAY_MS must be >= INDEXER_RETRY_MIN_DELAY_MS")

    return IndexerConfig(
        vault_package_id=_read_env("VAULT_PACKAGE_ID"),
        vault_module_name=_read_env("VAULT_MODULE_NAME"),
        sui_network=network,
        sui_rpc_url=_read_env("SUI_RPC_URL", SUI_FULLNODE_URLS[network]),
        batch_limit=_read_int("INDEXING_BATCH_LIMIT", 50, minimum=1, maximum=1000),
        poll_interval_ms=_read_int("INDEXER_POLL_MS", 3000, minimum=100),
        rpc_timeout_seconds=_read_int("INDEXER_RPC_TIMEOUT_SECONDS", 20, minimum=1),
        query_attempts=_read_int("INDEXER_QUERY_ATTEMPTS", 5, minimum=1),
        persist_attempts=_read_int("INDEXER_PERSIST_ATTEMPTS", 6, minimum=1),
        retry_min_delay_ms=retry_min_delay_ms,
        retry_max_delay_ms=retry_max_delay_ms,
        enable_live_polling=_read_bool("INDEXER_ENABLE_LIVE_POLLING", True),
    )
