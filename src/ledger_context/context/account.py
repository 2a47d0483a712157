"""Account contexts: fetch-and-decode a single remote record."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ..exceptions import DecodeError
from ..types import AccountInfo, AccountSnapshot, ContextDescription
from ..utils import maybe_await
from .node import AddressResolverVariant, ContextNode

logger = logging.getLogger(__name__)

T = TypeVar("T")

Projection = Callable[["AccountContext", Any], Any]


@dataclass(frozen=True)
class AccountKind(Generic[T]):
    """Configuration value describing one kind of remote account.

    ``name`` is the tag used for filtering, ``decode`` turns raw account bytes
    into a typed record and the optional ``project`` reshapes the snapshot
    into the view returned by :meth:`AccountContext.resolve`.
    """

    name: str
    decode: Callable[[AccountInfo], T]
    project: Projection | None = None

    def with_projection(self, project: Projection) -> AccountKind[T]:
        return AccountKind(name=self.name, decode=self.decode, project=project)


def _passthrough(account: AccountInfo) -> bytes:
    return account.data


RAW_ACCOUNT: AccountKind[bytes] = AccountKind(name="raw", decode=_passthrough)


def discriminated(
    discriminator: bytes, decode: Callable[[bytes], T], *, name: str | None = None
) -> Callable[[AccountInfo], T]:
    """Build a decoder that checks a leading discriminator before decoding the body.

    Without ``name`` the raised :class:`DecodeError` leaves ``kind`` unset so the
    owning account context reports its own kind.
    """

    def decoder(account: AccountInfo) -> T:
        prefix = account.data[: len(discriminator)]
        if prefix != discriminator:
            raise DecodeError(
                f"Account data does not carry the {name or 'expected'} discriminator",
                address=account.address,
                kind=name,
                details={"expected": discriminator.hex(), "actual": prefix.hex()},
            )
        return decode(account.data[len(discriminator) :])

    return decoder


class AccountContext(ContextNode, Generic[T]):
    """Context node that fetches and decodes a single remote account."""

    def __init__(
        self,
        parent: ContextNode | None,
        address: AddressResolverVariant,
        kind: AccountKind[T] = RAW_ACCOUNT,  # type: ignore[assignment]
        *,
        label: str | None = None,
    ) -> None:
        super().__init__(parent, address, label=label or _kind_label(kind))
        self.kind = kind
        self._snapshot: AccountSnapshot[T] | None = None
        self._fetched = False

    @property
    def account(self) -> AccountSnapshot[T] | None:
        """Snapshot from the last fetch; None when absent or not fetched yet."""
        return self._snapshot

    @property
    def fetched(self) -> bool:
        return self._fetched

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    async def resolve_account(self, no_cache: bool = False) -> AccountSnapshot[T] | None:
        return await self._deduplicated(
            "resolve_account",
            (no_cache,),
            lambda: self._fetch_and_decode(no_cache),
            alternative_params=(not no_cache,),
            interval_seconds=0 if no_cache else None,
        )

    async def _fetch_and_decode(self, no_cache: bool) -> AccountSnapshot[T] | None:
        address = await self.resolve_address()
        if address is None:
            self._snapshot = None
            self._fetched = True
            return None

        account = await self.runtime.fetch_account(address, no_cache=no_cache)
        if account is None:
            logger.debug("No %s account exists at %s", self.kind.name, address)
        snapshot = self._decode(account) if account is not None else None
        self._snapshot = snapshot
        self._fetched = True
        return snapshot

    def _decode(self, account: AccountInfo) -> AccountSnapshot[T]:
        try:
            decoded = self.kind.decode(account)
        except DecodeError as exc:
            if exc.address is None:
                exc.address = account.address
            if exc.kind is None:
                exc.kind = self.kind.name
            raise
        except Exception as exc:
            raise DecodeError(
                f"Failed to decode {self.kind.name} account",
                address=account.address,
                kind=self.kind.name,
                details={"error": str(exc), "size": len(account.data)},
            ) from exc
        return AccountSnapshot.from_account(account, decoded)

    async def resolve(self, no_cache: bool = False) -> Any:
        if self.kind.project is None:
            return await self.resolve_account(no_cache)
        return await self._deduplicated(
            "resolve",
            (no_cache,),
            lambda: self._project(no_cache),
            alternative_params=(not no_cache,),
            interval_seconds=0 if no_cache else None,
        )

    async def _project(self, no_cache: bool) -> Any:
        snapshot = await self.resolve_account(no_cache)
        return await maybe_await(self.kind.project(self, snapshot))  # type: ignore[misc]

    async def _resolve_tree_root(self, no_cache: bool) -> AccountSnapshot[T] | None:
        return await self.resolve_account(no_cache)

    def invalidate(self) -> int:
        self._snapshot = None
        self._fetched = False
        return super().invalidate()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def describe(self) -> ContextDescription:
        desc = super().describe()
        desc.properties["kind"] = self.kind.name
        if self._snapshot is not None:
            desc.properties["lamports"] = self._snapshot.lamports
            desc.properties["space"] = self._snapshot.space
        desc.unresolved = not self._fetched
        desc.unused = self._fetched and self._snapshot is None
        return desc


def _kind_label(kind: AccountKind[Any]) -> str:
    if kind.name == RAW_ACCOUNT.name:
        return "Account"
    return "".join(part.capitalize() for part in kind.name.replace("-", "_").split("_"))
