"""Batching of account reads into multi-account backend calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from ..types import AccountInfo, Address
from ..utils import chunked
from .base import LedgerBackend

logger = logging.getLogger(__name__)


class AccountLoader:
    """Collect account reads issued within a short window into batched calls.

    Single reads queue up for ``interval_seconds`` (or until ``max_batch_size``
    addresses are waiting) and are then dispatched together. A batch holding a
    single address goes through ``fetch_account``; larger ones through
    ``fetch_multiple_accounts``. With a zero interval or a batch size of one,
    every read is dispatched on its own immediately.
    """

    def __init__(
        self,
        backend: LedgerBackend,
        *,
        max_batch_size: int,
        interval_seconds: float,
    ) -> None:
        self._backend = backend
        self._max_batch_size = max_batch_size
        self._interval = interval_seconds
        self._queue: dict[Address, asyncio.Future] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def batching(self) -> bool:
        return self._interval > 0 and self._max_batch_size > 1

    @property
    def pending(self) -> int:
        return len(self._queue)

    def load(self, address: Address) -> asyncio.Future:
        """Queue one read and return the future of its account."""
        loop = asyncio.get_running_loop()
        if not self.batching:
            future = loop.create_future()
            self._spawn([address], {address: future})
            return future

        future = self._queue.get(address)
        if future is None:
            future = loop.create_future()
            self._queue[address] = future
        if len(self._queue) >= self._max_batch_size:
            self.flush()
        elif self._timer is None:
            self._timer = loop.call_later(self._interval, self.flush)
        return future

    def load_many(self, addresses: Sequence[Address]) -> dict[Address, asyncio.Future]:
        """Dispatch reads for ``addresses`` right away, chunked by the batch size."""
        loop = asyncio.get_running_loop()
        futures = {address: loop.create_future() for address in dict.fromkeys(addresses)}
        for batch in chunked(list(futures), self._max_batch_size):
            self._spawn(list(batch), futures)
        return futures

    def flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        queued, self._queue = self._queue, {}
        for batch in chunked(list(queued), self._max_batch_size):
            self._spawn(list(batch), queued)

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for future in self._queue.values():
            future.cancel()
        self._queue = {}

    def _spawn(self, batch: list[Address], futures: dict[Address, asyncio.Future]) -> None:
        task = asyncio.ensure_future(self._fetch(batch, futures))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fetch(self, batch: list[Address], futures: dict[Address, asyncio.Future]) -> None:
        try:
            if len(batch) == 1:
                accounts: Sequence[AccountInfo | None] = [
                    await self._backend.fetch_account(batch[0])
                ]
            else:
                logger.debug("Fetching %d accounts in a batch", len(batch))
                accounts = await self._backend.fetch_multiple_accounts(batch)
        except asyncio.CancelledError:
            for address in batch:
                futures[address].cancel()
            raise
        except Exception as exc:
            for address in batch:
                if not futures[address].done():
                    futures[address].set_exception(exc)
            return

        for address, account in zip(batch, accounts):
            if not futures[address].done():
                futures[address].set_result(account)
