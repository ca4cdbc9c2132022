"""
Node Integration Layer.

Provides access to a Starknet node for nonce queries, transaction
submission and receipt polling. Supports HTTP and WebSocket JSON-RPC.
"""

from typing import Optional

from airgap.config import AirgapConfig, NodeProvider, get_config
from airgap.node.interface import JsonRpcNode, NodeInterface, ReceiptSource
from airgap.node.rpc import HttpRpcNode
from airgap.node.ws import WebSocketRpcNode


def create_node(config: Optional[AirgapConfig] = None) -> NodeInterface:
    """
    Create the node adapter selected by configuration.

    A ws:// or wss:// RPC URL selects the WebSocket adapter regardless of
    the configured provider.
    """
    config = config or get_config()
    url = config.resolved_rpc_url
    if config.node_provider == NodeProvider.WEBSOCKET or url.startswith(("ws://", "wss://")):
        return WebSocketRpcNode(config)
    return HttpRpcNode(config)


__all__ = [
    "NodeInterface",
    "ReceiptSource",
    "JsonRpcNode",
    "HttpRpcNode",
    "WebSocketRpcNode",
    "create_node",
]
