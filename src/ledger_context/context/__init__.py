"""Context graph nodes."""

from .account import RAW_ACCOUNT, AccountContext, AccountKind, discriminated
from .iterative import IterativeAccountContext
from .node import ContextNode, as_address_resolver, track_reads
from .program import ProgramContext

__all__ = [
    "RAW_ACCOUNT",
    "AccountContext",
    "AccountKind",
    "ContextNode",
    "IterativeAccountContext",
    "ProgramContext",
    "as_address_resolver",
    "discriminated",
    "track_reads",
]
