"""
Chain adapters.

JSON-RPC implementations of the EventSource and ActionExecutor protocols.
"""

from pongbot.chain.jsonrpc import JsonRpcClient, JsonRpcError
from pongbot.chain.ping_source import PingEventSource, PING_TOPIC
from pongbot.chain.pong_executor import PongExecutor, encode_pong_call

__all__ = [
    "JsonRpcClient",
    "JsonRpcError",
    "PingEventSource",
    "PING_TOPIC",
    "PongExecutor",
    "encode_pong_call",
]
