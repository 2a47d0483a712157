"""Runtime context: root of every context graph."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from functools import partial
from typing import Any

from ..cache import CacheKey, DedupCache
from ..context.node import ContextNode
from ..exceptions import InvalidContextError
from ..types import (
    AccountInfo,
    Address,
    Blockhash,
    ContextDescription,
    SendOptions,
    SignedTransaction,
    SimulationResult,
    SubmissionReceipt,
)
from .base import LedgerBackend
from .config import RuntimeOptions
from .loader import AccountLoader

logger = logging.getLogger(__name__)

LookupTableDecoder = Callable[[AccountInfo], Sequence[Address]]

_ACCOUNT_METHOD = "fetch_account"
_BLOCKHASH_METHOD = "fetch_latest_blockhash"


class RuntimeContext(ContextNode):
    """Root node owning the ledger backend, the shared cache and the options."""

    def __init__(
        self,
        backend: LedgerBackend,
        *,
        cluster: str = "local",
        options: RuntimeOptions | None = None,
        cache: DedupCache | None = None,
        lookup_table_decoder: LookupTableDecoder | None = None,
    ) -> None:
        super().__init__(None, None, label="Runtime")
        self.backend = backend
        self.cluster = cluster
        self.options = options or RuntimeOptions()
        self.cache = (
            cache if cache is not None else DedupCache(max_entries=self.options.cache_max_entries)
        )
        self.loader = AccountLoader(
            backend,
            max_batch_size=self.options.account_batch_max_size,
            interval_seconds=self.options.account_batch_interval_seconds,
        )
        self._lookup_table_decoder = lookup_table_decoder
        if self.options.debug:
            logging.getLogger("ledger_context").setLevel(logging.DEBUG)

    @property
    def runtime(self) -> RuntimeContext:
        return self

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        self.loader.close()
        self.cache.clear()
        self.backend.close()

    async def __aenter__(self) -> RuntimeContext:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Account reads
    # ------------------------------------------------------------------
    def _account_key(self, address: Address) -> CacheKey:
        return CacheKey(self, _ACCOUNT_METHOD, (address,))

    async def fetch_account(self, address: Address, no_cache: bool = False) -> AccountInfo | None:
        """Fetch one account, cached for the account TTL; ``no_cache`` refetches and primes.

        Cached reads go through the account loader, so concurrent reads of
        different accounts are merged into one batched backend call.
        """
        if no_cache:
            logger.debug("Fetching account (no cache): %s", address)
            producer = partial(self.backend.fetch_account, address)
        else:
            producer = partial(self.loader.load, address)
        return await self.cache.deduplicated(
            self._account_key(address),
            producer,
            interval_seconds=0 if no_cache else self.options.account_cache_ttl_seconds,
        )

    async def fetch_multiple_accounts(
        self, addresses: Sequence[Address], no_cache: bool = False
    ) -> list[AccountInfo | None]:
        """Fetch many accounts with batched backend calls, reusing fresh cache entries.

        Every address read here is published as in flight before the batch is
        awaited, so concurrent single reads of the same address join it.
        """
        results: dict[Address, AccountInfo | None] = {}
        waiting: dict[Address, asyncio.Future] = {}
        missing: list[Address] = []
        ttl = self.options.account_cache_ttl_seconds

        for address in dict.fromkeys(addresses):
            key = self._account_key(address)
            if not no_cache:
                hit, value = self.cache.peek(key, ttl)
                if hit:
                    results[address] = value
                    continue
                pending = self.cache.in_flight(key)
                if pending is not None:
                    waiting[address] = pending
                    continue
            missing.append(address)

        if missing:
            for address, future in self.loader.load_many(missing).items():
                waiting[address] = self.cache.track(self._account_key(address), future)

        for address, pending in waiting.items():
            results[address] = await asyncio.shield(pending)

        return [results[address] for address in addresses]

    def invalidate_account(self, address: Address) -> bool:
        invalidated = self.cache.invalidate(self._account_key(address))
        if invalidated:
            logger.debug("Invalidated cached account %s", address)
        return invalidated

    async def fetch_address_lookup_tables(
        self, addresses: Sequence[Address], no_cache: bool = False
    ) -> dict[Address, tuple[Address, ...]]:
        """Fetch lookup tables and return their address lists keyed by table address."""
        if not addresses:
            return {}
        if self._lookup_table_decoder is None:
            raise InvalidContextError(
                "Address lookup tables requested but no lookup table decoder is configured",
                node=self.label,
                details={"addresses": list(addresses)},
            )

        accounts = await self.fetch_multiple_accounts(addresses, no_cache=no_cache)
        tables: dict[Address, tuple[Address, ...]] = {}
        for address, account in zip(addresses, accounts):
            if account is None:
                logger.warning("Address lookup table %s does not exist", address)
                continue
            tables[address] = tuple(self._lookup_table_decoder(account))
        return tables

    async def fetch_latest_blockhash(self) -> Blockhash:
        return await self.cache.deduplicated(
            CacheKey(self, _BLOCKHASH_METHOD),
            self.backend.fetch_latest_blockhash,
            interval_seconds=self.options.blockhash_cache_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def submit(
        self, transaction: SignedTransaction, options: SendOptions | None = None
    ) -> SubmissionReceipt:
        send_options = options or SendOptions()
        logger.info("Submitting transaction %s", transaction.signature)
        receipt = await self.backend.submit(transaction, send_options)
        logger.info(
            "Transaction %s confirmed: succeeded=%s slot=%s",
            receipt.signature,
            receipt.succeeded,
            receipt.slot,
        )
        return receipt

    async def simulate(self, transaction: SignedTransaction) -> SimulationResult:
        result = await self.backend.simulate(transaction)
        if result.error is not None:
            logger.debug("Simulation of %s failed: %s", transaction.signature, result.error)
        return result

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    async def resolve(self, no_cache: bool = False) -> dict[str, Any]:
        return {"cluster": self.cluster, "backend": type(self.backend).__name__}

    def describe(self) -> ContextDescription:
        return ContextDescription(
            label=self.label,
            properties={"cluster": self.cluster, "backend": type(self.backend).__name__},
        )
