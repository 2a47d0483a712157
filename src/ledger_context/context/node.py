"""Base node of the context graph."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, TypeVar, Union

from ..cache import CacheKey
from ..constants import DEFAULT_TREE_DEPTH
from ..exceptions import InvalidContextError
from ..types import Address, ContextDescription
from ..utils import maybe_await

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from ..runtime.context import RuntimeContext
    from .program import ProgramContext

logger = logging.getLogger(__name__)

AddressResolver = Callable[[Any], Union[Address, None, Awaitable[Union[Address, None]]]]
AddressResolverVariant = Union[Address, AddressResolver, None]

N = TypeVar("N", bound="ContextNode")

# Methods whose cached values survive invalidation: addresses never change once derived.
_ADDRESS_METHOD = "resolve_address"

_read_dependencies: ContextVar[list[ContextNode] | None] = ContextVar(
    "ledger_context_read_dependencies", default=None
)


@contextmanager
def track_reads() -> Iterator[list[ContextNode]]:
    """Collect every node whose cached state is read inside the block."""
    dependencies: list[ContextNode] = []
    token = _read_dependencies.set(dependencies)
    try:
        yield dependencies
    finally:
        _read_dependencies.reset(token)


def _record_read(node: ContextNode) -> None:
    dependencies = _read_dependencies.get()
    if dependencies is not None and not any(dep is node for dep in dependencies):
        dependencies.append(node)


def as_address_resolver(variant: AddressResolverVariant) -> AddressResolver | None:
    """Normalise a literal address or a resolver function into a resolver."""
    if variant is None:
        return None
    if callable(variant):
        return variant
    if isinstance(variant, str):
        literal = variant
        return lambda _parent: literal
    raise TypeError(f"Unsupported address resolver: {variant!r}")


class ContextNode:
    """Addressable, cacheable unit of the resolution graph.

    A node owns an address resolution strategy, a parent link and zero or more
    named children. Remote state is cached through the runtime's
    :class:`~ledger_context.cache.DedupCache`, keyed by the node itself.
    """

    label: str = ""

    def __init__(
        self,
        parent: ContextNode | None,
        address: AddressResolverVariant = None,
        *,
        label: str | None = None,
    ) -> None:
        self.parent = parent
        self._address_resolver = as_address_resolver(address)
        self._address: Address | None = None
        self._address_resolved = False
        if isinstance(address, str) and address:
            self._address = address
            self._address_resolved = True
        self._children: dict[str, ContextNode] = {}
        if label is not None:
            self.label = label
        elif not self.label:
            self.label = type(self).__name__.removesuffix("Context") or type(self).__name__

    # ------------------------------------------------------------------
    # Graph traversal
    # ------------------------------------------------------------------
    @property
    def runtime(self) -> RuntimeContext:
        if self.parent is None:
            raise InvalidContextError("Context is not attached to a runtime", node=self.label)
        return self.parent.runtime

    @property
    def program(self) -> ProgramContext:
        from .program import ProgramContext

        program = self.find_ancestor(ProgramContext)
        if program is None:
            raise InvalidContextError("Context is not attached to a program", node=self.label)
        return program

    def find_ancestor(self, node_type: type[N]) -> N | None:
        current = self.parent
        while current is not None:
            if isinstance(current, node_type):
                return current
            current = current.parent
        return None

    def add_child(self, name: str, node: N) -> N:
        if node.parent is not self:
            raise ValueError(f"Child '{name}' must be constructed with this node as parent")
        if name in self._children:
            raise ValueError(f"Child '{name}' is already attached to {self.label}")
        self._children[name] = node
        return node

    def child(self, name: str) -> ContextNode:
        try:
            return self._children[name]
        except KeyError:
            raise KeyError(f"{self.label} has no child named '{name}'") from None

    @property
    def children(self) -> list[tuple[str, ContextNode]]:
        return list(self._children.items())

    def descendants(self) -> Iterator[ContextNode]:
        for _, child in self.children:
            yield child
            yield from child.descendants()

    def __getattr__(self, name: str) -> ContextNode:
        children = self.__dict__.get("_children")
        if children is not None and name in children:
            return children[name]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    # ------------------------------------------------------------------
    # Cached resolution
    # ------------------------------------------------------------------
    async def _deduplicated(
        self,
        method: str,
        params: tuple[Hashable, ...],
        producer: Callable[[], Awaitable[Any]],
        *,
        alternative_params: tuple[Hashable, ...] | None = None,
        interval_seconds: float | None = None,
    ) -> Any:
        runtime = self.runtime
        if method != _ADDRESS_METHOD:
            _record_read(self)
        if interval_seconds is None:
            interval_seconds = runtime.options.dedup_interval_seconds
        return await runtime.cache.deduplicated(
            CacheKey(self, method, params),
            producer,
            alternative_params=alternative_params,
            interval_seconds=interval_seconds,
        )

    @property
    def address(self) -> Address | None:
        """Last successfully derived address, or None when not derived yet."""
        return self._address

    async def resolve_address(self, no_cache: bool = False) -> Address | None:
        if not no_cache and self._address is not None:
            return self._address
        return await self._deduplicated(
            _ADDRESS_METHOD,
            (no_cache,),
            self._derive_address,
            alternative_params=(not no_cache,),
            interval_seconds=0 if no_cache else None,
        )

    async def _derive_address(self) -> Address | None:
        if self._address_resolver is None:
            self._address_resolved = True
            return None

        address = await maybe_await(self._address_resolver(self.parent))
        self._address_resolved = True
        if address:
            self._address = str(address)
            logger.debug("Derived address for %s: %s", self.label, self._address)
            return self._address

        self._address = None
        logger.debug("Address for %s is not derivable under current state", self.label)
        return None

    async def resolve(self, no_cache: bool = False) -> Any:
        """Return an ergonomic view of this node; plain nodes report their address."""
        return await self.resolve_address(no_cache)

    async def resolve_account_tree(
        self, no_cache: bool = False, max_depth: int = DEFAULT_TREE_DEPTH
    ) -> Any:
        """Resolve this node and every descendant in parallel, failing fast."""
        return await self._deduplicated(
            "resolve_account_tree",
            (no_cache, max_depth),
            lambda: self._resolve_tree(no_cache, max_depth),
            alternative_params=(not no_cache, max_depth),
            interval_seconds=0 if no_cache else None,
        )

    async def _resolve_tree(self, no_cache: bool, depth: int) -> Any:
        pending = [self._resolve_tree_root(no_cache)]
        if depth > 0:
            pending.extend(child._resolve_tree(no_cache, depth - 1) for _, child in self.children)
        results = await asyncio.gather(*pending)
        return results[0]

    async def _resolve_tree_root(self, no_cache: bool) -> Any:
        if self._address_resolver is None:
            return None
        return await self.resolve_address(no_cache)

    # ------------------------------------------------------------------
    # Cache lifecycle
    # ------------------------------------------------------------------
    def invalidate(self) -> int:
        """Forget cached reads of this node; derived addresses are kept."""
        return self.runtime.cache.forget(self, keep_methods=(_ADDRESS_METHOD,))

    def forget_subtree(self) -> None:
        """Drop every cache entry owned by this node and its descendants."""
        cache = self.runtime.cache
        cache.forget(self)
        for node in self.descendants():
            cache.forget(node)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def describe(self) -> ContextDescription:
        return ContextDescription(
            label=self.label,
            address=self._address,
            unresolved=self._address_resolver is not None and not self._address_resolved,
        )

    def to_tree_string(self, **options: Any) -> str:
        from ..introspection import to_tree_string

        return to_tree_string(self, **options)

    def __str__(self) -> str:
        from ..introspection import format_description

        return format_description(self)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.label} address={self._address}>"
