"""Configuration containers for the ledger runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv

from ..constants import (
    CLUSTER_RPC_URLS,
    COMMITMENT_LEVELS,
    DEFAULT_ACCOUNT_BATCH_INTERVAL_SECONDS,
    DEFAULT_ACCOUNT_BATCH_MAX_SIZE,
    DEFAULT_ACCOUNT_CACHE_TTL_SECONDS,
    DEFAULT_BLOCKHASH_CACHE_TTL_SECONDS,
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_COMMITMENT,
    DEFAULT_CONFIRM_POLL_INTERVAL,
    DEFAULT_CONFIRM_TIMEOUT,
    DEFAULT_DEDUP_INTERVAL_SECONDS,
    DEFAULT_MAX_CHAIN_ITERATIONS,
    DEFAULT_NOT_FOUND_RETRIES,
    DEFAULT_NOT_FOUND_RETRY_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
)
from ..exceptions import ValidationError
from ..types import Address

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from ..transaction.template import ExecutionHooks
    from .base import Signer


@dataclass(frozen=True)
class RuntimeOptions:
    """Caching, batching and transaction defaults shared by a context graph."""

    dedup_interval_seconds: float = DEFAULT_DEDUP_INTERVAL_SECONDS
    account_cache_ttl_seconds: float = DEFAULT_ACCOUNT_CACHE_TTL_SECONDS
    account_batch_max_size: int = DEFAULT_ACCOUNT_BATCH_MAX_SIZE
    account_batch_interval_seconds: float = DEFAULT_ACCOUNT_BATCH_INTERVAL_SECONDS
    blockhash_cache_ttl_seconds: float = DEFAULT_BLOCKHASH_CACHE_TTL_SECONDS
    max_chain_iterations: int = DEFAULT_MAX_CHAIN_ITERATIONS
    cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES
    chain_interval_seconds: float = 0.0
    fee_payer: Address | None = None
    signer: Signer | None = None
    hooks: ExecutionHooks | None = None
    debug: bool = False

    def __post_init__(self) -> None:
        if self.dedup_interval_seconds < 0:
            raise ValidationError(
                "Dedup interval must not be negative",
                field="dedup_interval_seconds",
                value=self.dedup_interval_seconds,
            )
        if self.account_cache_ttl_seconds < 0:
            raise ValidationError(
                "Account cache TTL must not be negative",
                field="account_cache_ttl_seconds",
                value=self.account_cache_ttl_seconds,
            )
        if self.account_batch_max_size < 1:
            raise ValidationError(
                "Account batch size must be positive",
                field="account_batch_max_size",
                value=self.account_batch_max_size,
            )
        if self.account_batch_interval_seconds < 0:
            raise ValidationError(
                "Account batch interval must not be negative",
                field="account_batch_interval_seconds",
                value=self.account_batch_interval_seconds,
            )
        if self.max_chain_iterations < 1:
            raise ValidationError(
                "Chained execution needs at least one iteration",
                field="max_chain_iterations",
                value=self.max_chain_iterations,
            )
        if self.cache_max_entries < 1:
            raise ValidationError(
                "Cache size must be positive",
                field="cache_max_entries",
                value=self.cache_max_entries,
            )

    def with_overrides(self, **changes: Any) -> RuntimeOptions:
        return replace(self, **changes)


@dataclass(frozen=True)
class RpcConfig:
    """Connection settings for the JSON-RPC ledger backend."""

    rpc_url: str | None = None
    cluster: str = "devnet"
    commitment: str = DEFAULT_COMMITMENT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT
    confirm_poll_interval: float = DEFAULT_CONFIRM_POLL_INTERVAL
    not_found_retries: int = DEFAULT_NOT_FOUND_RETRIES
    not_found_retry_interval: float = DEFAULT_NOT_FOUND_RETRY_INTERVAL

    def __post_init__(self) -> None:
        if self.commitment not in COMMITMENT_LEVELS:
            raise ValidationError(
                "Unknown commitment level", field="commitment", value=self.commitment
            )

    def with_defaulted_url(self) -> RpcConfig:
        """Return a copy whose RPC URL defaults to the public endpoint of the cluster."""

        if self.rpc_url:
            return replace(self, rpc_url=self.rpc_url.rstrip("/"))

        url = CLUSTER_RPC_URLS.get(self.cluster)
        if url is None:
            raise ValidationError(
                "No default RPC URL for cluster; set rpc_url explicitly",
                field="cluster",
                value=self.cluster,
            )
        return replace(self, rpc_url=url)


def load_rpc_config(env_file: str | None = None, **overrides: Any) -> RpcConfig:
    """Build an :class:`RpcConfig` from ``LEDGER_*`` environment variables."""

    load_dotenv(env_file)

    values: dict[str, Any] = {
        "rpc_url": os.getenv("LEDGER_RPC_URL") or None,
        "cluster": os.getenv("LEDGER_CLUSTER", "devnet"),
        "commitment": os.getenv("LEDGER_COMMITMENT", DEFAULT_COMMITMENT),
    }
    timeout = os.getenv("LEDGER_REQUEST_TIMEOUT")
    if timeout:
        try:
            values["request_timeout"] = float(timeout)
        except ValueError as exc:
            raise ValidationError(
                "LEDGER_REQUEST_TIMEOUT must be numeric",
                field="request_timeout",
                value=timeout,
            ) from exc

    values.update(overrides)
    return RpcConfig(**values).with_defaulted_url()
