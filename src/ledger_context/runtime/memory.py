"""In-process ledger backend for tests and offline development."""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import json
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any, Union

from ..exceptions import SubmissionError
from ..types import (
    AccountInfo,
    Address,
    Blockhash,
    InstructionBundle,
    SendOptions,
    SignedTransaction,
    SimulationResult,
    SubmissionReceipt,
)
from ..utils import maybe_await, serialise_value
from .base import LedgerBackend

logger = logging.getLogger(__name__)

SYSTEM_OWNER = "11111111111111111111111111111111"


@dataclass(frozen=True)
class ProcessorResult:
    """What the in-memory ledger produced for one transaction."""

    logs: tuple[str, ...] = ()
    error: Any | None = None
    raw_events: tuple[bytes, ...] = ()
    units_consumed: int | None = None


TransactionProcessor = Callable[
    ["InMemoryBackend", SignedTransaction],
    Union[ProcessorResult, None, Awaitable[Union[ProcessorResult, None]]],
]


class InMemoryBackend(LedgerBackend):
    """Dictionary-backed ledger that records every call it serves.

    Transactions are handed to ``processor``, which may mutate the stored
    accounts and reports logs, raw events and an optional error. Without a
    processor every transaction succeeds with no effect.
    """

    def __init__(
        self,
        accounts: Mapping[Address, AccountInfo] | None = None,
        processor: TransactionProcessor | None = None,
        latency: float = 0.0,
    ) -> None:
        self.accounts: dict[Address, AccountInfo] = dict(accounts or {})
        self.processor = processor
        self.latency = latency
        self.slot = 0
        self.fetch_calls: list[Address] = []
        self.batch_fetch_calls: list[list[Address]] = []
        self.blockhash_calls = 0
        self.submit_calls: list[SignedTransaction] = []
        self.simulate_calls: list[SignedTransaction] = []
        self.closed = False

    # ------------------------------------------------------------------
    # Ledger state
    # ------------------------------------------------------------------
    def set_account(
        self,
        address: Address,
        data: bytes,
        *,
        owner: Address = SYSTEM_OWNER,
        lamports: int = 0,
        executable: bool = False,
    ) -> AccountInfo:
        account = AccountInfo(
            address=address,
            data=bytes(data),
            owner=owner,
            lamports=lamports,
            space=len(data),
            executable=executable,
        )
        self.accounts[address] = account
        return account

    def update_account(self, address: Address, **changes: Any) -> AccountInfo:
        account = replace(self.accounts[address], **changes)
        if "data" in changes and "space" not in changes:
            account = replace(account, space=len(account.data))
        self.accounts[address] = account
        return account

    def remove_account(self, address: Address) -> AccountInfo | None:
        return self.accounts.pop(address, None)

    def reset_calls(self) -> None:
        self.fetch_calls.clear()
        self.batch_fetch_calls.clear()
        self.blockhash_calls = 0
        self.submit_calls.clear()
        self.simulate_calls.clear()

    @property
    def fetch_count(self) -> int:
        """Number of accounts read, counting each address of a batch."""
        return len(self.fetch_calls) + sum(len(batch) for batch in self.batch_fetch_calls)

    @property
    def read_addresses(self) -> list[Address]:
        """Every address read, single and batched, in call order per kind."""
        batched = (address for batch in self.batch_fetch_calls for address in batch)
        return [*self.fetch_calls, *batched]

    async def _tick(self) -> None:
        await asyncio.sleep(self.latency)

    # ------------------------------------------------------------------
    # LedgerBackend
    # ------------------------------------------------------------------
    async def fetch_account(self, address: Address) -> AccountInfo | None:
        self.fetch_calls.append(address)
        await self._tick()
        return self.accounts.get(address)

    async def fetch_multiple_accounts(
        self, addresses: Sequence[Address]
    ) -> list[AccountInfo | None]:
        self.batch_fetch_calls.append(list(addresses))
        await self._tick()
        return [self.accounts.get(address) for address in addresses]

    async def fetch_latest_blockhash(self) -> Blockhash:
        self.blockhash_calls += 1
        await self._tick()
        digest = hashlib.sha256(f"blockhash:{self.slot}".encode()).hexdigest()
        return Blockhash(blockhash=digest, last_valid_block_height=self.slot + 150)

    async def _process(self, transaction: SignedTransaction) -> ProcessorResult:
        if self.processor is None:
            return ProcessorResult()
        result = await maybe_await(self.processor(self, transaction))
        return result or ProcessorResult()

    async def submit(
        self, transaction: SignedTransaction, options: SendOptions
    ) -> SubmissionReceipt:
        self.submit_calls.append(transaction)
        await self._tick()
        result = await self._process(transaction)

        if result.error is not None and not options.skip_preflight:
            raise SubmissionError(
                "Transaction simulation failed",
                signature=transaction.signature,
                diagnostics=result.error,
                logs=list(result.logs),
            )

        self.slot += 1
        logger.debug(
            "Processed %s at slot %d (error=%s)", transaction.signature, self.slot, result.error
        )
        return SubmissionReceipt(
            signature=transaction.signature,
            succeeded=result.error is None,
            slot=self.slot,
            logs=tuple(result.logs),
            error=result.error,
            raw_events=tuple(result.raw_events),
        )

    async def simulate(self, transaction: SignedTransaction) -> SimulationResult:
        self.simulate_calls.append(transaction)
        await self._tick()
        # simulate against a copy so the processor cannot leak state changes
        saved = dict(self.accounts)
        try:
            result = await self._process(transaction)
        finally:
            self.accounts = saved
        return SimulationResult(
            logs=tuple(result.logs), error=result.error, units_consumed=result.units_consumed
        )

    def close(self) -> None:
        self.closed = True


class LocalSigner:
    """Signer for the in-memory ledger producing deterministic digests.

    The payload is the JSON rendering of the bundle; no cryptography is
    involved.
    """

    def __init__(self, address: Address) -> None:
        self._address = address
        self._nonce = itertools.count()

    @property
    def address(self) -> Address:
        return self._address

    async def sign(self, bundle: InstructionBundle) -> SignedTransaction:
        payload = json.dumps(serialise_value(bundle), sort_keys=True, default=str).encode()
        digest = hashlib.sha256(
            payload + self._address.encode() + str(next(self._nonce)).encode()
        ).hexdigest()
        return SignedTransaction(bundle=bundle, signature=digest, payload=payload)
