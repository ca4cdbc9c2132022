"""
Abstract interface for Starknet node access.

Defines the RPC surface the broadcaster consumes, plus the JSON-RPC
plumbing shared by the HTTP and WebSocket adapters.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from airgap.core.felt import to_felt
from airgap.errors import NetworkError, NonceMismatchError, RpcError

# Starknet JSON-RPC error codes the pipeline reacts to
TXN_HASH_NOT_FOUND = 29
INVALID_TRANSACTION_NONCE = 52


class ReceiptSource(ABC):
    """
    Where transaction status and receipts are read from.

    Kept separate so polling logic can be tested with a fake source.
    """

    @abstractmethod
    async def get_transaction_status(self, tx_hash: str) -> Optional[dict]:
        """
        Get the status of a transaction.

        Returns:
            Dict with finality_status (and execution_status once executed),
            or None if the node does not know the transaction yet
        """
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        """
        Get the receipt of an included transaction.

        Returns:
            Receipt dict, or None if not available yet
        """
        pass


class NodeInterface(ReceiptSource):
    """
    Abstract interface for Starknet node access.

    This interface defines the blockchain operations needed by the pipeline:
    - Chain id and account nonce queries
    - Raw invoke transaction submission
    - Transaction status and receipt monitoring
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the node.

        Raises:
            TransportError: If connection cannot be established
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the node."""
        pass

    @abstractmethod
    async def get_chain_id(self) -> int:
        pass

    @abstractmethod
    async def get_nonce(self, address: str, block_id: str = "latest") -> int:
        """
        Get the current nonce of an account.

        Args:
            address: Account address (hex)
            block_id: Block tag to read at

        Returns:
            Nonce as an int
        """
        pass

    @abstractmethod
    async def add_invoke_transaction(self, invoke_transaction: dict) -> str:
        """
        Submit a signed INVOKE_TXN_V3 object.

        Args:
            invoke_transaction: Wire payload, signature included

        Returns:
            Transaction hash reported by the node

        Raises:
            RpcError: If the node rejects the transaction
            NonceMismatchError: If the nonce is stale
        """
        pass

    async def __aenter__(self) -> "NodeInterface":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()


class JsonRpcNode(NodeInterface):
    """
    Starknet JSON-RPC methods on top of an abstract request primitive.

    Subclasses only provide transport via _request().
    """

    @abstractmethod
    async def _request(self, method: str, params: Any = None) -> Any:
        """
        Send one JSON-RPC request and return its result.

        Raises:
            RpcError: For JSON-RPC error objects
            TransportError: For connection failures
        """
        pass

    async def get_chain_id(self) -> int:
        result = await self._request("starknet_chainId", [])
        return to_felt(result, "chain_id")

    async def get_nonce(self, address: str, block_id: str = "latest") -> int:
        result = await self._request(
            "starknet_getNonce",
            {"block_id": block_id, "contract_address": address},
        )
        return to_felt(result, "nonce")

    async def add_invoke_transaction(self, invoke_transaction: dict) -> str:
        result = await self._request(
            "starknet_addInvokeTransaction",
            {"invoke_transaction": invoke_transaction},
        )
        tx_hash = (result or {}).get("transaction_hash")
        if not tx_hash:
            raise RpcError("Node returned no transaction hash", data=result)
        return tx_hash

    async def get_transaction_status(self, tx_hash: str) -> Optional[dict]:
        return await self._lookup("starknet_getTransactionStatus", tx_hash)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self._lookup("starknet_getTransactionReceipt", tx_hash)

    async def _lookup(self, method: str, tx_hash: str) -> Optional[dict]:
        try:
            return await self._request(method, {"transaction_hash": tx_hash})
        except RpcError as e:
            if e.code == TXN_HASH_NOT_FOUND:
                return None
            raise


def rpc_error_from_payload(error: Any) -> NetworkError:
    """Turn a JSON-RPC error object into the matching exception."""
    if not isinstance(error, dict):
        return RpcError(str(error))

    code = error.get("code")
    message = error.get("message", "Unknown RPC error")
    data = error.get("data")

    if code == INVALID_TRANSACTION_NONCE:
        return NonceMismatchError(f"Invalid transaction nonce: {data or message}")

    return RpcError(message, code=code, data=data)
