"""Program context: the fixed-address node consumers hang their graph from."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from ..types import Address, ContextDescription
from .node import ContextNode

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from ..cache import DedupCache
    from ..runtime.base import LedgerBackend
    from ..runtime.config import RuntimeOptions
    from ..runtime.context import RuntimeContext


class ProgramContext(ContextNode):
    """Node for an on-ledger program, addressed per cluster or explicitly."""

    addresses: ClassVar[Mapping[str, Address | None]] = {}

    def __init__(
        self,
        parent: RuntimeContext,
        program_address: Address | None = None,
        *,
        label: str | None = None,
    ) -> None:
        address = program_address or type(self).addresses.get(parent.cluster)
        super().__init__(parent, address, label=label)
        self.supported = address is not None

    @classmethod
    def connect(
        cls,
        backend: LedgerBackend,
        *,
        cluster: str = "local",
        options: RuntimeOptions | None = None,
        cache: DedupCache | None = None,
        program_address: Address | None = None,
        **runtime_kwargs: Any,
    ) -> ProgramContext:
        from ..runtime.context import RuntimeContext

        runtime = RuntimeContext(
            backend, cluster=cluster, options=options, cache=cache, **runtime_kwargs
        )
        return runtime.add_child("program", cls(runtime, program_address))

    def describe(self) -> ContextDescription:
        desc = super().describe()
        desc.properties["cluster"] = self.runtime.cluster
        desc.unused = not self.supported
        return desc
