"""
Minimal async Ethereum JSON-RPC client over httpx.
"""

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional

import httpx

from pongbot.core.errors import PongBotError


class JsonRpcError(PongBotError):
    """The node answered with a JSON-RPC ``error`` member."""

    def __init__(self, method: str, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.data = data


def to_quantity(value: int) -> str:
    return hex(int(value))


def from_quantity(value: str | int) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


class JsonRpcClient:
    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        http2: bool = True,
    ) -> None:
        self.url = url
        # A client passed in is shared and not closed here
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(http2=http2, timeout=timeout)
            self._owns_client = True
        self._ids = itertools.count(1)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def call(self, method: str, *params: Any) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": list(params)}
        resp = await self.client.post(self.url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise JsonRpcError(method, -32603, f"unexpected response: {data!r}")
        if data.get("error"):
            err = data["error"]
            raise JsonRpcError(method, int(err.get("code", -32603)), str(err.get("message", "")), err.get("data"))
        return data.get("result")

    async def block_number(self) -> int:
        return from_quantity(await self.call("eth_blockNumber"))

    async def chain_id(self) -> int:
        return from_quantity(await self.call("eth_chainId"))

    async def gas_price(self) -> int:
        return from_quantity(await self.call("eth_gasPrice"))

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return from_quantity(await self.call("eth_getTransactionCount", address, block))

    async def get_logs(
        self,
        address: str,
        topics: List[Optional[str]],
        from_block: int,
        to_block: int,
    ) -> List[Dict[str, Any]]:
        """Logs in the inclusive range [from_block, to_block]."""
        flt = {
            "address": address,
            "topics": topics,
            "fromBlock": to_quantity(from_block),
            "toBlock": to_quantity(to_block),
        }
        return list(await self.call("eth_getLogs", flt) or [])

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.call("eth_sendRawTransaction", raw_tx)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", tx_hash)
