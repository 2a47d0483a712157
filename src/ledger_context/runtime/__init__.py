"""Ledger runtime: backends, configuration and the root context."""

from .base import LedgerBackend, Signer
from .config import RpcConfig, RuntimeOptions, load_rpc_config
from .context import RuntimeContext
from .loader import AccountLoader
from .memory import InMemoryBackend, LocalSigner, ProcessorResult
from .rpc import JsonRpcBackend

__all__ = [
    "AccountLoader",
    "InMemoryBackend",
    "JsonRpcBackend",
    "LedgerBackend",
    "LocalSigner",
    "ProcessorResult",
    "RpcConfig",
    "RuntimeContext",
    "RuntimeOptions",
    "Signer",
    "load_rpc_config",
]
