"""
Starknet Airgap

Offline construction, hardware signing, multisig signature combination and
broadcast of Starknet invoke v3 transactions. Each step runs as its own
command, possibly on a different (air-gapped) machine, and hands over to
the next one through JSON artifacts.
"""

__version__ = "0.1.0"

from airgap.core.status import BroadcastResult, BroadcastState
from airgap.core.transaction import Call, SignedTransaction, UnsignedTransaction
from airgap.tx.broadcaster import Broadcaster
from airgap.tx.builder import UnsignedTransactionBuilder
from airgap.tx.hasher import TransactionHasher
from airgap.tx.signature import SignatureAssembler

__all__ = [
    "Broadcaster",
    "BroadcastResult",
    "BroadcastState",
    "Call",
    "SignedTransaction",
    "SignatureAssembler",
    "TransactionHasher",
    "UnsignedTransaction",
    "UnsignedTransactionBuilder",
]
