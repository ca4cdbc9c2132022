"""
Invoke v3 transaction hash.

Computes the hash the account contract verifies signatures against:

    poseidon(
        "invoke", version, sender_address,
        poseidon(tip, L1_GAS bound, L2_GAS bound, L1_DATA bound),
        poseidon(paymaster_data),
        chain_id, nonce,
        nonce_da_mode << 32 | fee_da_mode,
        poseidon(account_deployment_data),
        poseidon(calldata),
    )

Each resource bound is packed into one field element as
resource_name (56 bits) | max_amount (64 bits) | max_price_per_unit (128 bits).
The signature and display-only fields never take part.
"""

from typing import List, Union

import structlog
from poseidon_py.poseidon_hash import poseidon_hash_many

from airgap.core.felt import encode_short_string, to_felt
from airgap.core.transaction import (
    DataAvailabilityMode,
    ResourceBound,
    ResourceBounds,
    UnsignedTransaction,
)

logger = structlog.get_logger(__name__)

INVOKE_PREFIX = encode_short_string("invoke")

L1_GAS_NAME = encode_short_string("L1_GAS")
L2_GAS_NAME = encode_short_string("L2_GAS")
L1_DATA_GAS_NAME = encode_short_string("L1_DATA")

MAX_AMOUNT_BITS = 64
MAX_PRICE_PER_UNIT_BITS = 128

DATA_AVAILABILITY_MODE_BITS = 32


def pack_resource_bound(resource_name: int, bound: ResourceBound) -> int:
    """Pack a resource name and its bound into a single field element."""
    return (
        (resource_name << (MAX_AMOUNT_BITS + MAX_PRICE_PER_UNIT_BITS))
        | (bound.max_amount << MAX_PRICE_PER_UNIT_BITS)
        | bound.max_price_per_unit
    )


def packed_resource_bounds(resource_bounds: ResourceBounds) -> List[int]:
    """Packed bounds in protocol order: L1 gas, L2 gas, L1 data gas."""
    return [
        pack_resource_bound(L1_GAS_NAME, resource_bounds.l1_gas),
        pack_resource_bound(L2_GAS_NAME, resource_bounds.l2_gas),
        pack_resource_bound(L1_DATA_GAS_NAME, resource_bounds.l1_data_gas),
    ]


def hash_fee_fields(tip: int, resource_bounds: ResourceBounds) -> int:
    return poseidon_hash_many([tip, *packed_resource_bounds(resource_bounds)])


def pack_data_availability_modes(
    nonce_mode: DataAvailabilityMode,
    fee_mode: DataAvailabilityMode,
) -> int:
    return (nonce_mode.as_int << DATA_AVAILABILITY_MODE_BITS) + fee_mode.as_int


def compute_transaction_hash(tx: UnsignedTransaction, chain_id: int) -> int:
    """
    Compute the invoke v3 transaction hash.

    Pure function of the non-signature fields and the chain id.

    Args:
        tx: The unsigned transaction
        chain_id: Network chain id as a field element

    Returns:
        Transaction hash as a field element
    """
    version = to_felt(tx.version, "version")
    elements = [
        INVOKE_PREFIX,
        version,
        tx.sender_address,
        hash_fee_fields(tx.tip, tx.resource_bounds),
        poseidon_hash_many(list(tx.paymaster_data)),
        chain_id,
        tx.nonce,
        pack_data_availability_modes(
            tx.nonce_data_availability_mode,
            tx.fee_data_availability_mode,
        ),
        poseidon_hash_many(list(tx.account_deployment_data)),
        poseidon_hash_many(list(tx.calldata)),
    ]
    return poseidon_hash_many(elements)


class TransactionHasher:
    """
    Hashes transactions for one network.

    The signer uses it to know what to sign and the broadcaster uses it
    again to check the signed payload was not altered in between.
    """

    def __init__(self, chain_id: int):
        """
        Initialize the hasher.

        Args:
            chain_id: Network chain id as a field element
        """
        self.chain_id = chain_id

    def hash(self, tx: Union[UnsignedTransaction, dict]) -> int:
        """Hash an unsigned transaction or its artifact dict."""
        if isinstance(tx, dict):
            tx = UnsignedTransaction.from_dict(tx)
        tx_hash = compute_transaction_hash(tx, self.chain_id)
        logger.debug(
            "transaction_hash_computed",
            sender=hex(tx.sender_address),
            nonce=tx.nonce,
            tx_hash=hex(tx_hash),
        )
        return tx_hash

    def hash_hex(self, tx: Union[UnsignedTransaction, dict]) -> str:
        return hex(self.hash(tx))
