"""JSON-RPC ledger backend over HTTP."""

from __future__ import annotations

import asyncio
import base64
import itertools
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

import requests

from ..constants import COMMITMENT_LEVELS
from ..exceptions import NetworkError, SubmissionError
from ..types import (
    AccountInfo,
    Address,
    Blockhash,
    SendOptions,
    SignedTransaction,
    SimulationResult,
    SubmissionReceipt,
)
from .base import LedgerBackend
from .config import RpcConfig

logger = logging.getLogger(__name__)


class JsonRpcBackend(LedgerBackend):
    """Talk to a ledger node through its JSON-RPC endpoint.

    Blocking HTTP calls run in a worker thread so the event loop keeps
    multiplexing other pending reads.
    """

    def __init__(self, config: RpcConfig, session: requests.Session | None = None) -> None:
        self._config = config.with_defaulted_url()
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    @property
    def endpoint(self) -> str:
        return self._config.rpc_url or ""

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _request_json(self, method: str, params: Sequence[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": list(params)}
        try:
            response = self._session.post(
                self.endpoint,
                json=payload,
                timeout=self._config.request_timeout,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            raise NetworkError(
                f"RPC request {method} failed",
                endpoint=self.endpoint,
                status_code=getattr(getattr(exc, "response", None), "status_code", None),
                details={"error": str(exc)},
            ) from exc
        except ValueError as exc:
            raise NetworkError(
                f"RPC response for {method} is not valid JSON",
                endpoint=self.endpoint,
                details={"error": str(exc)},
            ) from exc

        if not isinstance(body, Mapping):
            raise NetworkError(
                f"Unexpected RPC response shape for {method}",
                endpoint=self.endpoint,
                details={"body": body},
            )
        error = body.get("error")
        if error is not None:
            raise _RpcError(method, error)
        return body.get("result")

    async def _call(self, method: str, *params: Any) -> Any:
        return await asyncio.to_thread(self._request_json, method, params)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def fetch_account(self, address: Address) -> AccountInfo | None:
        try:
            result = await self._call(
                "getAccountInfo",
                address,
                {"encoding": "base64", "commitment": self._config.commitment},
            )
        except _RpcError as exc:
            raise exc.as_network_error(self.endpoint) from exc
        return _parse_account(address, (result or {}).get("value"))

    async def fetch_multiple_accounts(
        self, addresses: Sequence[Address]
    ) -> list[AccountInfo | None]:
        try:
            result = await self._call(
                "getMultipleAccounts",
                list(addresses),
                {"encoding": "base64", "commitment": self._config.commitment},
            )
        except _RpcError as exc:
            raise exc.as_network_error(self.endpoint) from exc
        values = (result or {}).get("value") or []
        if len(values) != len(addresses):
            raise NetworkError(
                "getMultipleAccounts returned a mismatched number of accounts",
                endpoint=self.endpoint,
                details={"requested": len(addresses), "returned": len(values)},
            )
        return [_parse_account(address, value) for address, value in zip(addresses, values)]

    async def fetch_latest_blockhash(self) -> Blockhash:
        try:
            result = await self._call("getLatestBlockhash", {"commitment": self._config.commitment})
        except _RpcError as exc:
            raise exc.as_network_error(self.endpoint) from exc
        value = (result or {}).get("value") or {}
        return Blockhash(
            blockhash=str(value.get("blockhash")),
            last_valid_block_height=int(value.get("lastValidBlockHeight", 0)),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def submit(
        self, transaction: SignedTransaction, options: SendOptions
    ) -> SubmissionReceipt:
        encoded = base64.b64encode(transaction.payload).decode("ascii")
        config: dict[str, Any] = {
            "encoding": "base64",
            "skipPreflight": options.skip_preflight,
            "preflightCommitment": options.commitment,
        }
        if options.max_retries is not None:
            config["maxRetries"] = options.max_retries

        try:
            signature = await self._call("sendTransaction", encoded, config)
        except _RpcError as exc:
            data = exc.error.get("data") if isinstance(exc.error, Mapping) else None
            logs = (data or {}).get("logs") if isinstance(data, Mapping) else None
            raise SubmissionError(
                exc.message,
                signature=transaction.signature,
                diagnostics=exc.error,
                logs=list(logs or []),
            ) from exc

        signature = str(signature or transaction.signature)
        logger.info("Transaction sent signature=%s", signature)
        await self._await_confirmation(signature, options.commitment)
        return await self._fetch_receipt(signature, options.commitment)

    async def _await_confirmation(self, signature: str, commitment: str) -> None:
        deadline = time.monotonic() + self._config.confirm_timeout
        target = COMMITMENT_LEVELS.index(commitment)
        while True:
            try:
                result = await self._call(
                    "getSignatureStatuses", [signature], {"searchTransactionHistory": True}
                )
            except _RpcError as exc:
                raise exc.as_network_error(self.endpoint) from exc

            status = ((result or {}).get("value") or [None])[0]
            if status:
                level = status.get("confirmationStatus")
                if status.get("err") is not None or (
                    level in COMMITMENT_LEVELS and COMMITMENT_LEVELS.index(level) >= target
                ):
                    return

            if time.monotonic() >= deadline:
                raise NetworkError(
                    "Timed out waiting for transaction confirmation",
                    endpoint=self.endpoint,
                    details={"signature": signature, "commitment": commitment},
                )
            await asyncio.sleep(self._config.confirm_poll_interval)

    async def _fetch_receipt(self, signature: str, commitment: str) -> SubmissionReceipt:
        fetch_config = {
            "encoding": "json",
            "commitment": commitment,
            "maxSupportedTransactionVersion": 0,
        }
        remaining = self._config.not_found_retries
        while True:
            try:
                result = await self._call("getTransaction", signature, fetch_config)
            except _RpcError as exc:
                raise exc.as_network_error(self.endpoint) from exc

            meta = (result or {}).get("meta")
            # a response without log messages is treated as not yet indexed by the node
            if meta and meta.get("logMessages") is not None:
                break
            if remaining <= 0:
                raise NetworkError(
                    "Confirmed transaction could not be fetched",
                    endpoint=self.endpoint,
                    details={"signature": signature},
                )
            remaining -= 1
            logger.debug("Retrying getTransaction for %s", signature)
            await asyncio.sleep(self._config.not_found_retry_interval)

        error = meta.get("err")
        return SubmissionReceipt(
            signature=signature,
            succeeded=error is None,
            slot=result.get("slot"),
            logs=tuple(meta.get("logMessages") or ()),
            error=error,
        )

    async def simulate(self, transaction: SignedTransaction) -> SimulationResult:
        encoded = base64.b64encode(transaction.payload).decode("ascii")
        try:
            result = await self._call(
                "simulateTransaction",
                encoded,
                {"encoding": "base64", "commitment": self._config.commitment, "sigVerify": False},
            )
        except _RpcError as exc:
            raise SubmissionError(
                exc.message, signature=transaction.signature, diagnostics=exc.error
            ) from exc
        value = (result or {}).get("value") or {}
        return SimulationResult(
            logs=tuple(value.get("logs") or ()),
            error=value.get("err"),
            units_consumed=value.get("unitsConsumed"),
        )


class _RpcError(Exception):
    """JSON-RPC error object returned by the node."""

    def __init__(self, method: str, error: Any) -> None:
        self.method = method
        self.error = error
        message = error.get("message") if isinstance(error, Mapping) else str(error)
        self.message = f"RPC {method} rejected: {message}"
        super().__init__(self.message)

    def as_network_error(self, endpoint: str) -> NetworkError:
        code = self.error.get("code") if isinstance(self.error, Mapping) else None
        return NetworkError(self.message, endpoint=endpoint, details={"error": self.error, "code": code})


def _parse_account(address: Address, value: Mapping[str, Any] | None) -> AccountInfo | None:
    if not value:
        return None
    data_field = value.get("data") or ["", "base64"]
    raw, encoding = (data_field[0], data_field[1]) if isinstance(data_field, list) else (data_field, "base64")
    if encoding != "base64":
        raise NetworkError(
            "Unsupported account data encoding",
            details={"address": address, "encoding": encoding},
        )
    data = base64.b64decode(raw)
    return AccountInfo(
        address=address,
        data=data,
        owner=str(value.get("owner")),
        lamports=int(value.get("lamports", 0)),
        space=int(value["space"]) if value.get("space") is not None else len(data),
        executable=bool(value.get("executable", False)),
    )
