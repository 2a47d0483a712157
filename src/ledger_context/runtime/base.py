"""Ledger backend interface and signer protocol."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

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


class LedgerBackend(ABC):
    """Remote ledger primitives consumed by the runtime context."""

    @abstractmethod
    async def fetch_account(self, address: Address) -> AccountInfo | None:
        pass

    @abstractmethod
    async def fetch_multiple_accounts(
        self, addresses: Sequence[Address]
    ) -> list[AccountInfo | None]:
        pass

    @abstractmethod
    async def fetch_latest_blockhash(self) -> Blockhash:
        pass

    @abstractmethod
    async def submit(
        self, transaction: SignedTransaction, options: SendOptions
    ) -> SubmissionReceipt:
        pass

    @abstractmethod
    async def simulate(self, transaction: SignedTransaction) -> SimulationResult:
        pass

    def close(self) -> None:
        pass


@runtime_checkable
class Signer(Protocol):
    """Produces a signed, serialised transaction from an assembled bundle."""

    @property
    def address(self) -> Address: ...

    async def sign(self, bundle: InstructionBundle) -> SignedTransaction: ...
