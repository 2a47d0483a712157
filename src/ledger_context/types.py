"""Type definitions and data models for the ledger context framework."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from .constants import DEFAULT_COMMITMENT

Address = str  # Opaque ledger address
Signature = str  # Transaction signature as reported by the ledger

T = TypeVar("T")


class TemplateState(Enum):
    """Lifecycle of the most recent run of a transaction template."""

    UNBUILT = "unbuilt"
    BUILT = "built"
    EXECUTED = "executed"
    CONFIRMED_SUCCESS = "confirmed-success"
    CONFIRMED_FAILURE = "confirmed-failure"


@dataclass(frozen=True)
class AccountInfo:
    """Raw account as returned by the ledger: bytes plus ledger metadata."""

    address: Address
    data: bytes
    owner: Address
    lamports: int = 0
    space: int | None = None
    executable: bool = False

    @property
    def size(self) -> int:
        return self.space if self.space is not None else len(self.data)


@dataclass(frozen=True)
class AccountSnapshot(Generic[T]):
    """Decoded account record together with the ledger metadata."""

    address: Address
    data: T
    owner: Address
    lamports: int
    space: int
    executable: bool = False

    @classmethod
    def from_account(cls, account: AccountInfo, decoded: T) -> AccountSnapshot[T]:
        return cls(
            address=account.address,
            data=decoded,
            owner=account.owner,
            lamports=account.lamports,
            space=account.size,
            executable=account.executable,
        )


@dataclass(frozen=True)
class AccountMeta:
    """Account reference attached to an instruction."""

    address: Address
    is_signer: bool = False
    is_writable: bool = False


@dataclass(frozen=True)
class Instruction:
    """One atomic operation submitted as part of a transaction."""

    program_address: Address
    accounts: tuple[AccountMeta, ...] = ()
    data: bytes = b""


@dataclass(frozen=True)
class Blockhash:
    """Recent blockhash used as a transaction lifetime."""

    blockhash: str
    last_valid_block_height: int


@dataclass(frozen=True)
class InstructionBundle:
    """Assembled, unsigned transaction ready to be signed and submitted."""

    instructions: tuple[Instruction, ...]
    fee_payer: Address
    lookup_tables: Mapping[Address, tuple[Address, ...]] = field(default_factory=dict)
    recent_blockhash: Blockhash | None = None
    args: Any = None
    description: str | None = None


@dataclass(frozen=True)
class SignedTransaction:
    """Bundle together with its signature and wire payload."""

    bundle: InstructionBundle
    signature: Signature
    payload: bytes = b""


@dataclass(frozen=True)
class SendOptions:
    """Submission options forwarded to the ledger backend."""

    commitment: str = DEFAULT_COMMITMENT
    skip_preflight: bool = False
    max_retries: int | None = None
    raise_on_failure: bool = True


@dataclass(frozen=True)
class SubmissionReceipt:
    """Outcome of a confirmed submission."""

    signature: Signature
    succeeded: bool
    slot: int | None = None
    logs: tuple[str, ...] = ()
    error: Any | None = None
    raw_events: tuple[bytes, ...] = ()


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of a transaction simulation."""

    logs: tuple[str, ...] = ()
    error: Any | None = None
    units_consumed: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class ContextDescription:
    """Human-readable summary of one context node."""

    label: str
    address: Address | None = None
    properties: dict[str, Any] = field(default_factory=dict)
    mutable: bool = False
    unresolved: bool = False
    unused: bool = False
