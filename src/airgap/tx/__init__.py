"""
Transaction module.

Handles offline construction, hashing, signature assembly and broadcast.
"""

from airgap.tx.broadcaster import Broadcaster, ReceiptPoller, load_signed_transaction
from airgap.tx.builder import (
    ExecutionOptions,
    UnsignedTransactionBuilder,
    encode_multicall,
    load_calls,
    resolve_resource_bounds,
)
from airgap.tx.hasher import TransactionHasher, compute_transaction_hash
from airgap.tx.signature import RawSignature, SignatureAssembler, format_signature

__all__ = [
    "Broadcaster",
    "ReceiptPoller",
    "load_signed_transaction",
    "ExecutionOptions",
    "UnsignedTransactionBuilder",
    "encode_multicall",
    "load_calls",
    "resolve_resource_bounds",
    "TransactionHasher",
    "compute_transaction_hash",
    "RawSignature",
    "SignatureAssembler",
    "format_signature",
]
