"""Iterative contexts: a dynamic list of child accounts derived from parent state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from typing import Any, Union

from ..types import Address, ContextDescription
from ..utils import maybe_await
from .account import AccountContext
from .node import ContextNode

logger = logging.getLogger(__name__)

AddressListResolver = Callable[
    [Any], Union[Sequence[Address], None, Awaitable[Union[Sequence[Address], None]]]
]
ChildFactory = Callable[
    ["IterativeAccountContext", Address],
    Union[ContextNode, None, Awaitable[Union[ContextNode, None]]],
]


class IterativeAccountContext(ContextNode):
    """Materialises one child context per address resolved from the parent.

    The address list is re-derived on refresh and diffed against the previous
    one: surviving children keep their cached state, vanished ones are dropped
    and forgotten by the cache, new ones are constructed via the factory.
    """

    def __init__(
        self,
        parent: ContextNode | None,
        address_list: AddressListResolver,
        instantiate_child: ChildFactory,
        *,
        label: str | None = None,
    ) -> None:
        super().__init__(parent, None, label=label)
        self._address_list_resolver = address_list
        self._instantiate_child = instantiate_child
        self._addresses: list[Address] | None = None
        self._items: dict[Address, ContextNode] = {}

    # ------------------------------------------------------------------
    # Child access
    # ------------------------------------------------------------------
    @property
    def addresses(self) -> list[Address] | None:
        return None if self._addresses is None else list(self._addresses)

    @property
    def children(self) -> list[tuple[str, ContextNode]]:
        static = list(self._children.items())
        return static + [(f"[{index}]", child) for index, child in enumerate(self._items.values())]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ContextNode]:
        return iter(list(self._items.values()))

    def __getitem__(self, index: int) -> ContextNode:
        return list(self._items.values())[index]

    def get(self, address: Address) -> ContextNode | None:
        return self._items.get(address)

    def filter(self, kind: str) -> list[AccountContext[Any]]:
        """Return the children whose account kind carries the given tag."""
        return [
            child
            for child in self._items.values()
            if isinstance(child, AccountContext) and child.kind.name == kind
        ]

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    async def resolve_address_list(self, no_cache: bool = False) -> list[Address] | None:
        return await self._deduplicated(
            "resolve_address_list",
            (no_cache,),
            self._derive_address_list,
            alternative_params=(not no_cache,),
            interval_seconds=0 if no_cache else None,
        )

    async def _derive_address_list(self) -> list[Address] | None:
        addresses = await maybe_await(self._address_list_resolver(self.parent))
        if addresses is None:
            logger.debug("Address list for %s is not derivable under current state", self.label)
            return None
        return [str(address) for address in addresses]

    async def resolve_children(self, no_cache: bool = False) -> list[ContextNode]:
        """Refresh the address list and reconcile the child set against it."""
        return await self._deduplicated(
            "resolve_children",
            (no_cache,),
            lambda: self._refresh_children(no_cache),
            alternative_params=(not no_cache,),
            interval_seconds=0 if no_cache else None,
        )

    async def _refresh_children(self, no_cache: bool) -> list[ContextNode]:
        addresses = await self.resolve_address_list(no_cache)
        previous = self._items

        if addresses is None:
            current: dict[Address, ContextNode] = {}
        else:
            ordered = list(dict.fromkeys(addresses))
            fresh = [address for address in ordered if address not in previous]
            built = await asyncio.gather(
                *(maybe_await(self._instantiate_child(self, address)) for address in fresh)
            )
            constructed = dict(zip(fresh, built))
            current = {}
            for address in ordered:
                child = previous[address] if address in previous else constructed.get(address)
                if child is not None:
                    current[address] = child

        dropped = [child for address, child in previous.items() if address not in current]
        for child in dropped:
            child.forget_subtree()

        self._items = current
        self._addresses = None if addresses is None else list(current)
        logger.debug(
            "Reconciled %s children: kept=%d dropped=%d total=%d",
            self.label,
            sum(1 for address in current if address in previous),
            len(dropped),
            len(current),
        )
        return list(current.values())

    async def resolve_account(self, no_cache: bool = False) -> list[Any]:
        """Resolve the snapshot of every current child."""
        return await self._deduplicated(
            "resolve_account",
            (no_cache,),
            lambda: self._resolve_child_accounts(no_cache),
            alternative_params=(not no_cache,),
            interval_seconds=0 if no_cache else None,
        )

    async def _resolve_child_accounts(self, no_cache: bool) -> list[Any]:
        children = await self.resolve_children(no_cache)
        return list(await asyncio.gather(*(_resolve_child(child, no_cache) for child in children)))

    async def resolve(self, no_cache: bool = False) -> list[Any]:
        children = await self.resolve_children(no_cache)
        return list(await asyncio.gather(*(child.resolve(no_cache) for child in children)))

    async def _resolve_tree(self, no_cache: bool, depth: int) -> list[Any]:
        children = await self.resolve_children(no_cache)
        if depth <= 0:
            return []
        return list(
            await asyncio.gather(*(child._resolve_tree(no_cache, depth - 1) for child in children))
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def describe(self) -> ContextDescription:
        desc = super().describe()
        children = list(self._items.values())
        kinds = sorted(
            {child.kind.name for child in children if isinstance(child, AccountContext)}
        )
        desc.properties["length"] = len(children) if self._addresses is not None else None
        desc.properties["kinds"] = ",".join(kinds) or None
        desc.unresolved = self._addresses is None
        desc.unused = bool(children) and all(
            isinstance(child, AccountContext) and child.fetched and child.account is None
            for child in children
        )
        return desc


async def _resolve_child(child: ContextNode, no_cache: bool) -> Any:
    if isinstance(child, AccountContext):
        return await child.resolve_account(no_cache)
    return await child.resolve(no_cache)
