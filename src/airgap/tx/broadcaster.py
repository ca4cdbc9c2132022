"""
Broadcaster - submits signed transactions and follows them to a receipt.

Submission is never retried: resubmitting after a partial failure can
burn the nonce slot twice. Status reads are idempotent and are polled at
a fixed interval until a terminal state or the timeout.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, Tuple, Union

import structlog
from starknet_py.hash.utils import verify_message_signature

from airgap.config import AirgapConfig, get_config
from airgap.core.felt import to_felt
from airgap.core.status import BroadcastResult, BroadcastState
from airgap.core.transaction import SignedTransaction
from airgap.errors import (
    BroadcastTimeoutError,
    EncodingError,
    NonceMismatchError,
    TransportError,
    ValidationError,
)
from airgap.node.interface import NodeInterface, ReceiptSource
from airgap.tx.hasher import TransactionHasher
from airgap.tx.signature import signature_groups, validate_signature_shape

logger = structlog.get_logger(__name__)

# Finality statuses reported by starknet_getTransactionStatus
PENDING_FINALITY = frozenset({"RECEIVED", "CANDIDATE", "PRE_CONFIRMED"})
REJECTED_FINALITY = frozenset({"REJECTED"})
ACCEPTED_FINALITY = frozenset({"ACCEPTED_ON_L2", "ACCEPTED_ON_L1"})

EXECUTION_SUCCEEDED = "SUCCEEDED"
EXECUTION_REVERTED = "REVERTED"


def load_signed_transaction(data: dict) -> SignedTransaction:
    """
    Validate a signed artifact before it goes anywhere near the network.

    Raises:
        ValidationError: On a missing field, wrong type/version, a legacy
            `signatures` key or a malformed signature array
    """
    if isinstance(data, dict) and "signatures" in data:
        raise ValidationError(
            "Transaction contains 'signatures' field. Only 'signature' field is allowed."
        )
    signed = SignedTransaction.from_dict(data)
    validate_signature_shape(signed.signature)
    return signed


def verify_multisig_groups(signed: SignedTransaction, tx_hash: int) -> None:
    """
    Check every [pubkey, r, s] group signs the given hash.

    Single-signer [r, s] signatures carry no public key and are left to
    the account contract.
    """
    if not signed.is_multisig:
        return

    for index, (public_key, r, s) in enumerate(signature_groups(signed.signature)):
        if not verify_message_signature(tx_hash, [r, s], public_key):
            raise ValidationError(
                f"Signature group {index + 1} (signer {hex(public_key)}) does not match "
                f"transaction hash {hex(tx_hash)}; the transaction fields changed after signing "
                "or it was signed for another network"
            )


class ReceiptPoller:
    """
    Drives a BroadcastResult through the lifecycle by reading the node.

        SUBMITTED -> ACCEPTED | REJECTED
        ACCEPTED  -> SUCCEEDED | REVERTED
        any non-terminal state -> TIMED_OUT when the bound is hit

    Clock and sleep are injectable so the state machine can be tested
    without real time passing.
    """

    def __init__(
        self,
        source: ReceiptSource,
        interval: float,
        timeout: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = source
        self.interval = interval
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep

    async def poll_once(self, result: BroadcastResult) -> BroadcastResult:
        """Read the node once and advance the state if it moved."""
        result.polls += 1

        if result.state == BroadcastState.SUBMITTED:
            status = await self.source.get_transaction_status(result.transaction_hash)
            if status is None:
                return result

            finality = status.get("finality_status")
            result.finality_status = finality

            if finality in REJECTED_FINALITY:
                result.revert_reason = status.get("failure_reason")
                result.transition(BroadcastState.REJECTED)
                logger.warning(
                    "transaction_rejected",
                    tx_hash=result.transaction_hash,
                    reason=result.revert_reason,
                )
                return result

            if finality in ACCEPTED_FINALITY:
                result.transition(BroadcastState.ACCEPTED)
                logger.info("transaction_accepted", tx_hash=result.transaction_hash, finality=finality)
            elif finality not in PENDING_FINALITY:
                logger.warning("unknown_finality_status", finality=finality)
                return result

        if result.state == BroadcastState.ACCEPTED:
            receipt = await self.source.get_transaction_receipt(result.transaction_hash)
            if receipt is None:
                return result
            self._apply_receipt(result, receipt)

        return result

    def _apply_receipt(self, result: BroadcastResult, receipt: dict) -> None:
        execution = receipt.get("execution_status")
        if execution not in (EXECUTION_SUCCEEDED, EXECUTION_REVERTED):
            return

        result.finality_status = receipt.get("finality_status", result.finality_status)
        result.block_number = receipt.get("block_number")
        result.block_hash = receipt.get("block_hash")

        if execution == EXECUTION_SUCCEEDED:
            result.transition(BroadcastState.SUCCEEDED)
            logger.info(
                "transaction_succeeded",
                tx_hash=result.transaction_hash,
                block_number=result.block_number,
            )
        else:
            result.revert_reason = receipt.get("revert_reason")
            result.transition(BroadcastState.REVERTED)
            logger.warning(
                "transaction_reverted",
                tx_hash=result.transaction_hash,
                block_number=result.block_number,
                reason=result.revert_reason,
            )

    async def wait(
        self,
        result: BroadcastResult,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BroadcastResult:
        """
        Poll until a terminal state, cancellation or the timeout.

        A cancelled wait returns the last observed, non-final state: the
        transaction may still land later.

        Raises:
            BroadcastTimeoutError: If the timeout elapses first
        """
        deadline = self._clock() + self.timeout

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    "receipt_polling_cancelled",
                    tx_hash=result.transaction_hash,
                    state=result.state.value,
                )
                return result

            try:
                await self.poll_once(result)
            except TransportError as e:
                logger.warning("receipt_poll_failed", tx_hash=result.transaction_hash, error=str(e))

            if result.is_final:
                return result

            remaining = deadline - self._clock()
            if remaining <= 0:
                last_state = result.state
                result.transition(BroadcastState.TIMED_OUT)
                logger.warning(
                    "receipt_polling_timed_out",
                    tx_hash=result.transaction_hash,
                    last_state=last_state.value,
                    polls=result.polls,
                )
                raise BroadcastTimeoutError(result.transaction_hash, last_state, self.timeout)

            await self._pause(min(self.interval, remaining), cancel_event)

    async def _pause(self, delay: float, cancel_event: Optional[asyncio.Event]) -> None:
        """Sleep between polls, returning early once cancel_event is set."""
        if cancel_event is None:
            await self._sleep(delay)
            return

        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)

        if not sleeper.cancelled():
            sleeper.result()


class Broadcaster:
    """
    Submits signed invoke transactions.

    Usage:
        ```python
        broadcaster = Broadcaster(node, TransactionHasher(chain_id))
        result = await broadcaster.broadcast(signed_artifact)
        ```
    """

    def __init__(
        self,
        node: NodeInterface,
        hasher: TransactionHasher,
        config: Optional[AirgapConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the broadcaster.

        Args:
            node: Node to submit to and poll
            hasher: Hasher bound to the target chain
            config: Pipeline configuration (polling defaults)
            clock: Monotonic time source for polling
            sleep: Async sleep used between polls
        """
        self.node = node
        self.hasher = hasher
        self.config = config or get_config()
        self._clock = clock
        self._sleep = sleep

    def prepare(self, transaction: Union[dict, SignedTransaction]) -> Tuple[SignedTransaction, int]:
        """
        Validate a signed transaction and recompute its hash.

        Returns:
            Tuple of (signed transaction, local transaction hash)
        """
        if isinstance(transaction, SignedTransaction):
            signed = transaction
            validate_signature_shape(signed.signature)
        else:
            signed = load_signed_transaction(transaction)

        tx_hash = self.hasher.hash(signed.transaction)
        verify_multisig_groups(signed, tx_hash)
        return signed, tx_hash

    async def check_nonce(self, signed: SignedTransaction) -> None:
        """
        Compare the transaction nonce with the account's current nonce.

        Raises:
            NonceMismatchError: If they differ; nothing is submitted
        """
        tx = signed.transaction
        actual = await self.node.get_nonce(hex(tx.sender_address))
        if actual != tx.nonce:
            logger.warning(
                "nonce_mismatch",
                sender=hex(tx.sender_address),
                expected=tx.nonce,
                actual=actual,
            )
            raise NonceMismatchError(
                f"Account nonce is {hex(actual)} but the transaction was built for nonce "
                f"{hex(tx.nonce)}; rebuild and re-sign the transaction",
                expected=tx.nonce,
                actual=actual,
            )

    async def submit(self, signed: SignedTransaction, local_hash: int) -> BroadcastResult:
        """
        Send the wire payload once.

        Display-only fields and the local timestamp are stripped. RPC errors
        propagate untouched.
        """
        payload = signed.to_rpc_payload()

        logger.info(
            "broadcast_submitting",
            sender=payload["sender_address"],
            nonce=payload["nonce"],
            calldata_length=len(payload["calldata"]),
            signature_length=len(payload["signature"]),
        )

        tx_hash = await self.node.add_invoke_transaction(payload)

        try:
            returned = to_felt(tx_hash, "transaction_hash")
        except EncodingError:
            returned = None
        if returned != local_hash:
            logger.warning(
                "transaction_hash_mismatch",
                node_hash=tx_hash,
                local_hash=hex(local_hash),
            )

        logger.info("broadcast_submitted", tx_hash=tx_hash)
        return BroadcastResult(transaction_hash=tx_hash)

    async def broadcast(
        self,
        transaction: Union[dict, SignedTransaction],
        verify_nonce: bool = True,
        wait: bool = True,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BroadcastResult:
        """
        Validate, submit and (optionally) wait for a final status.

        Args:
            transaction: Signed artifact dict or SignedTransaction
            verify_nonce: Read the account nonce first and refuse on mismatch
            wait: Poll for a receipt after submission
            timeout: Polling bound in seconds (config default)
            poll_interval: Delay between polls in seconds (config default)
            cancel_event: Set to stop polling early

        Returns:
            BroadcastResult with the last observed state

        Raises:
            ValidationError: If the artifact is malformed or was altered
            NetworkError: If the node rejects the submission
            BroadcastTimeoutError: If no final status arrives in time
        """
        signed, local_hash = self.prepare(transaction)

        if verify_nonce:
            await self.check_nonce(signed)

        result = await self.submit(signed, local_hash)

        if not wait:
            return result

        return await self.wait_for_status(
            result,
            timeout=timeout,
            poll_interval=poll_interval,
            cancel_event=cancel_event,
        )

    async def wait_for_status(
        self,
        result: Union[str, BroadcastResult],
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BroadcastResult:
        """Poll an earlier submission (by result or hash) to a final status."""
        if isinstance(result, str):
            result = BroadcastResult(transaction_hash=result)

        if timeout is None:
            timeout = self.config.receipt_timeout_seconds
        if poll_interval is None:
            poll_interval = self.config.receipt_poll_interval_seconds

        poller = ReceiptPoller(
            self.node,
            interval=poll_interval,
            timeout=timeout,
            clock=self._clock,
            sleep=self._sleep,
        )

        try:
            return await poller.wait(result, cancel_event=cancel_event)
        except asyncio.CancelledError:
            logger.info(
                "broadcast_wait_cancelled",
                tx_hash=result.transaction_hash,
                state=result.state.value,
            )
            raise
