"""
Async HTTP client for the ledger fullnode REST API.

Read primitives (view calls, whole-resource reads) go straight to the node.
Writes are signed and submitted by an injected wallet provider; this client
then waits for the transaction to leave the pending state before returning.
No retries happen here: failures propagate with the function or resource
name attached.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from marketsync.core.errors import LedgerQueryError, TransactionError
from marketsync.core.json_utils import dumps

log = logging.getLogger("marketsync")

ENTRY_FUNCTION_PAYLOAD = "entry_function_payload"


class WalletProvider(Protocol):
    """Signs and submits an entry-function payload; returns at least {"hash": ...}."""

    async def sign_and_submit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


class LedgerQueryClient:
    def __init__(
        self,
        base_url: str,
        marketplace_addr: str,
        module: str = "nft_marketplace",
        wallet: Optional[WalletProvider] = None,
        timeout: float = 10.0,
        tx_timeout: float = 30.0,
        tx_poll_interval: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.marketplace_addr = marketplace_addr
        self.module = module
        self.wallet = wallet
        self.tx_timeout = tx_timeout
        self.tx_poll_interval = tx_poll_interval
        # A shared client passed in is not closed by close(); one we create is.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @property
    def can_write(self) -> bool:
        return self.wallet is not None

    def qualify(self, function: str) -> str:
        """'get_nft_details' -> '<addr>::<module>::get_nft_details'."""
        if "::" in function:
            return function
        return f"{self.marketplace_addr}::{self.module}::{function}"

    def resource_type(self, name: str) -> str:
        return self.qualify(name)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def call_view(
        self,
        function: str,
        args: Sequence[Any],
        type_arguments: Optional[Sequence[str]] = None,
    ) -> List[Any]:
        """Invoke a read-only view function; returns its positional return values."""
        qualified = self.qualify(function)
        body = {
            "function": qualified,
            "type_arguments": list(type_arguments or []),
            "arguments": [_stringify_arg(a) for a in args],
        }
        try:
            resp = await self.client.post(f"{self.base_url}/view", json=body)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LedgerQueryError(qualified, exc) from exc
        if not isinstance(data, list):
            raise LedgerQueryError(qualified, f"unexpected view response: {data!r}")
        return data

    async def read_resource(self, address: str, resource_type: str) -> Dict[str, Any]:
        """Read a whole resource published under ``address``."""
        qualified = self.resource_type(resource_type)
        url = f"{self.base_url}/accounts/{address}/resource/{qualified}"
        try:
            resp = await self.client.get(url)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LedgerQueryError(qualified, exc) from exc
        if not isinstance(data, dict):
            raise LedgerQueryError(qualified, f"unexpected resource response: {data!r}")
        return data

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def entry_payload(self, function: str, arguments: Sequence[Any]) -> Dict[str, Any]:
        return {
            "type": ENTRY_FUNCTION_PAYLOAD,
            "function": self.qualify(function),
            "type_arguments": [],
            "arguments": list(arguments),
        }

    async def submit_and_await(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit through the wallet and wait for finality.

        Raises TransactionError when the wallet rejects the payload, the
        transaction aborts on-chain, or it is still pending after tx_timeout.
        """
        if self.wallet is None:
            raise TransactionError("no wallet provider configured")
        try:
            submitted = await self.wallet.sign_and_submit(payload)
        except TransactionError:
            raise
        except Exception as exc:
            raise TransactionError(str(exc)) from exc

        tx_hash = submitted.get("hash") if isinstance(submitted, dict) else None
        if not tx_hash:
            raise TransactionError(f"wallet returned no transaction hash: {submitted!r}")

        log.debug(dumps({"event": "tx_submitted", "function": payload.get("function"), "hash": tx_hash}))
        return await self.wait_for_transaction(tx_hash)

    async def wait_for_transaction(self, tx_hash: str) -> Dict[str, Any]:
        deadline = time.monotonic() + self.tx_timeout
        url = f"{self.base_url}/transactions/by_hash/{tx_hash}"
        while True:
            try:
                resp = await self.client.get(url)
            except httpx.HTTPError as exc:
                # Node hiccup while waiting; keep polling until the deadline
                resp = None
                last_error: object = exc
            else:
                last_error = None

            if resp is not None and resp.status_code == 200:
                try:
                    txn = resp.json()
                except ValueError as exc:
                    raise TransactionError(f"transaction {tx_hash}: malformed response", tx_hash=tx_hash) from exc
                if not isinstance(txn, dict):
                    raise TransactionError(f"transaction {tx_hash}: unexpected response {txn!r}", tx_hash=tx_hash)
                if txn.get("type") != "pending_transaction":
                    if not txn.get("success", False):
                        vm_status = str(txn.get("vm_status", ""))
                        raise TransactionError(
                            f"transaction {tx_hash} failed: {vm_status}",
                            vm_status=vm_status,
                            tx_hash=tx_hash,
                        )
                    return txn
            elif resp is not None and resp.status_code != 404:
                last_error = f"HTTP {resp.status_code}"

            if time.monotonic() >= deadline:
                raise TransactionError(
                    f"transaction {tx_hash} not final after {self.tx_timeout}s ({last_error})",
                    tx_hash=tx_hash,
                )
            await asyncio.sleep(self.tx_poll_interval)


def _stringify_arg(value: Any) -> Any:
    """View arguments: u64 values are sent as decimal strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    return value
