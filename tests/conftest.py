from __future__ import annotations

import pytest

from ledger_context.cache import DedupCache
from ledger_context.context.program import ProgramContext
from ledger_context.runtime.config import RuntimeOptions
from ledger_context.runtime.memory import InMemoryBackend, LocalSigner

PROGRAM_ADDRESS = "Prog111111111111111111111111111111111111111"
PAYER_ADDRESS = "Payer11111111111111111111111111111111111111"


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def signer() -> LocalSigner:
    return LocalSigner(PAYER_ADDRESS)


@pytest.fixture
def program(ledger: InMemoryBackend, clock: FakeClock, signer: LocalSigner) -> ProgramContext:
    return ProgramContext.connect(
        ledger,
        program_address=PROGRAM_ADDRESS,
        cache=DedupCache(clock=clock),
        options=RuntimeOptions(signer=signer, fee_payer=PAYER_ADDRESS),
    )
