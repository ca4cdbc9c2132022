"""
WebSocket JSON-RPC adapter for node integration.

Keeps one socket open to the node and matches responses to requests by id,
which suits long receipt polls against nodes exposing a ws:// endpoint.
"""

import asyncio
import json
import uuid
from typing import Any, Dict, Optional

import structlog
import websockets

from airgap.config import AirgapConfig, get_config
from airgap.errors import NetworkError, TransportError
from airgap.node.interface import JsonRpcNode, rpc_error_from_payload

logger = structlog.get_logger(__name__)


class WebSocketRpcNode(JsonRpcNode):
    """
    Starknet JSON-RPC over WebSocket.

    A background task reads the socket and resolves pending futures.
    """

    def __init__(self, config: Optional[AirgapConfig] = None, url: Optional[str] = None):
        self.config = config or get_config()
        self.url = url or self.config.resolved_rpc_url
        self._ws = None
        self._pending_requests: Dict[str, asyncio.Future] = {}
        self._receive_task: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        """Establish the WebSocket connection."""
        if self._ws is not None:
            return

        try:
            self._ws = await websockets.connect(
                self.url,
                ping_interval=30,
                ping_timeout=10,
            )
        except (OSError, websockets.WebSocketException) as e:
            raise TransportError(f"Failed to connect to {self.url}: {e}")

        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("ws_connected", url=self.url)

    async def disconnect(self) -> None:
        """Close the WebSocket connection."""
        if self._receive_task:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        if self._ws:
            await self._ws.close()
            self._ws = None
            logger.info("ws_disconnected")

        self._fail_pending(TransportError("Connection closed"))

    async def _receive_loop(self) -> None:
        """Background task to receive WebSocket messages."""
        try:
            async for message in self._ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("ws_invalid_message", size=len(message))
                    continue

                # Match response to request
                request_id = data.get("id")
                future = self._pending_requests.pop(request_id, None)
                if future is None or future.done():
                    continue

                if data.get("error") is not None:
                    future.set_exception(rpc_error_from_payload(data["error"]))
                else:
                    future.set_result(data.get("result"))

        except websockets.ConnectionClosed:
            logger.warning("ws_connection_closed")
            self._fail_pending(TransportError("Connection closed by node"))

    def _fail_pending(self, error: NetworkError) -> None:
        for future in self._pending_requests.values():
            if not future.done():
                future.set_exception(error)
        self._pending_requests.clear()

    async def _request(self, method: str, params: Any = None) -> Any:
        """Send a JSON-RPC request and await its response."""
        if not self._ws:
            await self.connect()

        request_id = str(uuid.uuid4())
        request = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params if params is not None else [],
            "id": request_id,
        }

        future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        try:
            await self._ws.send(json.dumps(request))
            return await asyncio.wait_for(future, timeout=self.config.rpc_timeout_seconds)
        except asyncio.TimeoutError:
            raise TransportError(f"RPC request timeout: {method}")
        except websockets.ConnectionClosed as e:
            raise TransportError(f"RPC request failed: {e}")
        finally:
            self._pending_requests.pop(request_id, None)
