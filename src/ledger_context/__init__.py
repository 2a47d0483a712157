"""Ledger Context - cached context graphs and transaction templates.

This library resolves hierarchies of derived, cached and deduplicated ledger
account reads into typed snapshots, and assembles, simulates and executes
parameterised multi-instruction transactions, including chained ones that
repeat until the ledger reports no more work.
"""

from .cache import CacheKey, DedupCache
from .context import (
    RAW_ACCOUNT,
    AccountContext,
    AccountKind,
    ContextNode,
    IterativeAccountContext,
    ProgramContext,
    discriminated,
)
from .exceptions import (
    ChainMisconfigurationError,
    DecodeError,
    InvalidContextError,
    LedgerContextError,
    NetworkError,
    SubmissionError,
    ValidationError,
    require,
)
from .introspection import describe, format_description, to_tree_string
from .runtime import (
    InMemoryBackend,
    JsonRpcBackend,
    LedgerBackend,
    LocalSigner,
    ProcessorResult,
    RpcConfig,
    RuntimeContext,
    RuntimeOptions,
    Signer,
    load_rpc_config,
)
from .transaction import (
    EventDecoder,
    ExecutedEvents,
    ExecutionHooks,
    ExecutionResult,
    TemplateOverrides,
    TransactionTemplate,
    TransactionTemplateContext,
)
from .types import (
    AccountInfo,
    AccountMeta,
    AccountSnapshot,
    Address,
    Blockhash,
    ContextDescription,
    Instruction,
    InstructionBundle,
    SendOptions,
    SignedTransaction,
    SimulationResult,
    SubmissionReceipt,
    TemplateState,
)

__version__ = "0.1.0"

__all__ = [
    # Cache
    "CacheKey",
    "DedupCache",
    # Context graph
    "ContextNode",
    "ProgramContext",
    "AccountContext",
    "AccountKind",
    "RAW_ACCOUNT",
    "discriminated",
    "IterativeAccountContext",
    # Runtime
    "RuntimeContext",
    "RuntimeOptions",
    "RpcConfig",
    "load_rpc_config",
    "LedgerBackend",
    "Signer",
    "JsonRpcBackend",
    "InMemoryBackend",
    "LocalSigner",
    "ProcessorResult",
    # Transactions
    "TransactionTemplate",
    "TransactionTemplateContext",
    "TemplateOverrides",
    "ExecutionHooks",
    "ExecutionResult",
    "EventDecoder",
    "ExecutedEvents",
    # Introspection
    "describe",
    "format_description",
    "to_tree_string",
    # Types
    "Address",
    "AccountInfo",
    "AccountMeta",
    "AccountSnapshot",
    "Blockhash",
    "ContextDescription",
    "Instruction",
    "InstructionBundle",
    "SendOptions",
    "SignedTransaction",
    "SimulationResult",
    "SubmissionReceipt",
    "TemplateState",
    # Exceptions
    "LedgerContextError",
    "InvalidContextError",
    "DecodeError",
    "ValidationError",
    "SubmissionError",
    "ChainMisconfigurationError",
    "NetworkError",
    "require",
]
