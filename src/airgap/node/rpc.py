"""
HTTP JSON-RPC adapter for node integration.

Talks to a Starknet full node (Pathfinder, Juno, a hosted endpoint or
devnet) over plain HTTP POST requests.
"""

from typing import Any, Optional

import httpx
import structlog

from airgap.config import AirgapConfig, get_config
from airgap.errors import TransportError
from airgap.node.interface import JsonRpcNode, rpc_error_from_payload

logger = structlog.get_logger(__name__)


class HttpRpcNode(JsonRpcNode):
    """
    Starknet JSON-RPC over HTTP.

    Implements the NodeInterface with one POST per call.
    """

    def __init__(
        self,
        config: Optional[AirgapConfig] = None,
        url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the HTTP adapter.

        Args:
            config: Pipeline configuration. Uses global config if not provided.
            url: Endpoint override
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.config = config or get_config()
        self.url = url or self.config.resolved_rpc_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._next_id = 0

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            timeout=self.config.rpc_timeout_seconds,
            headers={"Content-Type": "application/json"},
            transport=self._transport,
        )
        logger.info("rpc_connected", url=self.url)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("rpc_disconnected")

    async def _request(self, method: str, params: Any = None) -> Any:
        if not self._client:
            await self.connect()

        self._next_id += 1
        body = {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": method,
            "params": params if params is not None else [],
        }

        try:
            response = await self._client.post(self.url, json=body)
        except httpx.RequestError as e:
            logger.error("rpc_request_error", method=method, error=str(e))
            raise TransportError(f"RPC request failed: {e}")

        if response.status_code >= 500:
            logger.error("rpc_server_error", method=method, status=response.status_code)
            raise TransportError(
                f"RPC endpoint returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError:
            logger.error("rpc_invalid_response", method=method, status=response.status_code)
            raise TransportError(
                f"RPC endpoint returned a non-JSON response (HTTP {response.status_code})"
            )

        if isinstance(payload, dict) and payload.get("error") is not None:
            error = rpc_error_from_payload(payload["error"])
            logger.warning("rpc_error", method=method, error=str(error))
            raise error

        if not isinstance(payload, dict) or "result" not in payload:
            raise TransportError(f"RPC response for {method} has no result")

        return payload["result"]
