"""
PongExecutor: answers a Ping by calling ``pong(bytes32 pingTxHash)``.

Flow per call:
    1. Build a legacy transaction (gas limit = effort, node gas price,
       pending nonce) and sign it locally with eth_account
    2. eth_sendRawTransaction
    3. Poll eth_getTransactionReceipt until mined or receipt_timeout_sec
    4. status 1 -> return the receipt block; anything else -> ActionFailure

Build + send is serialized by a lock so the primary and escalated tiers never
sign two transactions with the same nonce. The receipt wait is outside the
lock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional, TYPE_CHECKING

from eth_utils import keccak, to_checksum_address, to_hex

from pongbot.core.errors import ActionFailure
from pongbot.core.json_utils import dumps
from pongbot.core.models import Event
from pongbot.chain.jsonrpc import from_quantity

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount
    from pongbot.chain.jsonrpc import JsonRpcClient

PONG_SELECTOR = keccak(text="pong(bytes32)")[:4]


def encode_pong_call(ping_tx_hash: str) -> str:
    """ABI-encode pong(bytes32) calldata for a 0x-prefixed 32-byte hash."""
    raw = bytes.fromhex(ping_tx_hash[2:] if ping_tx_hash.startswith("0x") else ping_tx_hash)
    if len(raw) != 32:
        raise ValueError(f"expected a 32-byte transaction hash, got {len(raw)} bytes")
    return to_hex(PONG_SELECTOR + raw)


class PongExecutor:
    def __init__(
        self,
        rpc: "JsonRpcClient",
        account: "LocalAccount",
        contract_address: str,
        receipt_timeout_sec: float = 300.0,
        receipt_poll_sec: float = 2.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.rpc = rpc
        self.account = account
        self.contract_address = to_checksum_address(contract_address)
        self.receipt_timeout_sec = receipt_timeout_sec
        self.receipt_poll_sec = receipt_poll_sec
        self.log = logger or logging.getLogger("pongbot")
        self._send_lock = asyncio.Lock()
        self._chain_id: Optional[int] = None

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        self.log.log(level, dumps({"event": event, **kwargs}))

    @property
    def address(self) -> str:
        return self.account.address

    async def execute(self, event: Event, effort: int) -> int:
        try:
            pong_hash = await self._send(event, effort)
        except ActionFailure:
            raise
        except Exception as exc:
            raise ActionFailure(f"sending pong failed: {exc}", event_id=event.id) from exc

        self._log_event("pong_sent", tx=event.id, pong_tx=pong_hash, gas=effort)
        receipt = await self._wait_receipt(event, pong_hash)
        status = from_quantity(receipt.get("status", "0x0"))
        if status != 1:
            raise ActionFailure("pong transaction reverted", event_id=event.id, tx_hash=pong_hash)
        return from_quantity(receipt["blockNumber"])

    async def _send(self, event: Event, effort: int) -> str:
        async with self._send_lock:
            if self._chain_id is None:
                self._chain_id = await self.rpc.chain_id()
            gas_price = await self.rpc.gas_price()
            nonce = await self.rpc.get_transaction_count(self.account.address, "pending")
            tx: Dict[str, Any] = {
                "to": self.contract_address,
                "value": 0,
                "gas": int(effort),
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": self._chain_id,
                "data": encode_pong_call(event.id),
            }
            signed = self.account.sign_transaction(tx)
            return await self.rpc.send_raw_transaction(to_hex(signed.raw_transaction))

    async def _wait_receipt(self, event: Event, pong_hash: str) -> Dict[str, Any]:
        deadline = time.monotonic() + self.receipt_timeout_sec
        while True:
            try:
                receipt = await self.rpc.get_transaction_receipt(pong_hash)
            except Exception as exc:
                raise ActionFailure(f"receipt query failed: {exc}", event_id=event.id, tx_hash=pong_hash) from exc
            if receipt:
                return receipt
            if time.monotonic() >= deadline:
                raise ActionFailure(
                    f"no receipt after {self.receipt_timeout_sec}s",
                    event_id=event.id,
                    tx_hash=pong_hash,
                )
            await asyncio.sleep(self.receipt_poll_sec)
