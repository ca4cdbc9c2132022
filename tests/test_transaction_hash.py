"""
Test suite for the invoke v3 transaction hash.
"""

from dataclasses import replace

import pytest
from poseidon_py.poseidon_hash import poseidon_hash_many
from starknet_py.hash.transaction import (
    CommonTransactionV3Fields,
    TransactionHashPrefix,
    compute_invoke_v3_transaction_hash,
)
from starknet_py.net.client_models import DAMode
from starknet_py.net.client_models import ResourceBounds as SnResourceBounds
from starknet_py.net.client_models import ResourceBoundsMapping

from airgap.core.felt import encode_short_string
from airgap.core.transaction import DataAvailabilityMode, ResourceBound
from airgap.tx.hasher import (
    TransactionHasher,
    compute_transaction_hash,
    pack_data_availability_modes,
    pack_resource_bound,
)

from conftest import SEPOLIA_CHAIN_ID, make_resource_bounds


# ============================================================================
# Test Packing
# ============================================================================

class TestPacking:
    """Tests for the packed fee and data availability fields."""

    def test_resource_bound_layout(self):
        packed = pack_resource_bound(
            encode_short_string("L1_GAS"),
            ResourceBound(max_amount=0x2, max_price_per_unit=0x3),
        )

        assert packed >> 192 == encode_short_string("L1_GAS")
        assert (packed >> 128) & (2**64 - 1) == 2
        assert packed & (2**128 - 1) == 3

    def test_data_availability_modes(self):
        l1, l2 = DataAvailabilityMode.L1, DataAvailabilityMode.L2

        assert pack_data_availability_modes(l1, l1) == 0
        assert pack_data_availability_modes(l1, l2) == 1
        assert pack_data_availability_modes(l2, l1) == 1 << 32


# ============================================================================
# Test Hash Computation
# ============================================================================

class TestTransactionHash:
    """Tests for the transaction hash."""

    def test_matches_protocol_layout(self, sample_unsigned):
        tx = sample_unsigned
        bounds = tx.resource_bounds

        fee_hash = poseidon_hash_many([
            0,
            (encode_short_string("L1_GAS") << 192) | (bounds.l1_gas.max_amount << 128) | bounds.l1_gas.max_price_per_unit,
            (encode_short_string("L2_GAS") << 192) | (bounds.l2_gas.max_amount << 128) | bounds.l2_gas.max_price_per_unit,
            (encode_short_string("L1_DATA") << 192) | (bounds.l1_data_gas.max_amount << 128) | bounds.l1_data_gas.max_price_per_unit,
        ])
        expected = poseidon_hash_many([
            encode_short_string("invoke"),
            3,
            tx.sender_address,
            fee_hash,
            poseidon_hash_many([]),
            SEPOLIA_CHAIN_ID,
            5,
            0,
            poseidon_hash_many([]),
            poseidon_hash_many(list(tx.calldata)),
        ])

        assert compute_transaction_hash(tx, SEPOLIA_CHAIN_ID) == expected

    def test_deterministic(self, sample_unsigned, hasher):
        assert hasher.hash(sample_unsigned) == hasher.hash(sample_unsigned)

    def test_hash_from_artifact_dict(self, sample_unsigned, hasher):
        assert hasher.hash(sample_unsigned.to_dict()) == hasher.hash(sample_unsigned)

    def test_display_fields_do_not_matter(self, sample_unsigned, hasher):
        bare = sample_unsigned.without_display_fields()

        assert hasher.hash(bare) == hasher.hash(sample_unsigned)

    def test_timestamp_does_not_matter(self, sample_unsigned, hasher):
        assert hasher.hash(replace(sample_unsigned, timestamp=1)) == hasher.hash(sample_unsigned)

    def test_chain_id_matters(self, sample_unsigned):
        sepolia = TransactionHasher(SEPOLIA_CHAIN_ID).hash(sample_unsigned)
        mainnet = TransactionHasher(encode_short_string("SN_MAIN")).hash(sample_unsigned)

        assert sepolia != mainnet

    @pytest.mark.parametrize(
        "changes",
        [
            {"sender_address": 0x1234},
            {"calldata": (1, 0x1, 0x2, 1, 9)},
            {"nonce": 6},
            {"resource_bounds": make_resource_bounds(l2_amount=0x2FAF081)},
            {"tip": 1},
            {"paymaster_data": (1,)},
            {"account_deployment_data": (1,)},
            {"nonce_data_availability_mode": DataAvailabilityMode.L2},
            {"fee_data_availability_mode": DataAvailabilityMode.L2},
        ],
        ids=lambda changes: next(iter(changes)),
    )
    def test_every_hashed_field_matters(self, sample_unsigned, hasher, changes):
        changed = replace(sample_unsigned, **changes)

        assert hasher.hash(changed) != hasher.hash(sample_unsigned)

    def test_data_availability_flags_are_distinguished(self, sample_unsigned, hasher):
        nonce_l2 = replace(sample_unsigned, nonce_data_availability_mode=DataAvailabilityMode.L2)
        fee_l2 = replace(sample_unsigned, fee_data_availability_mode=DataAvailabilityMode.L2)

        assert hasher.hash(nonce_l2) != hasher.hash(fee_l2)

    def test_hash_hex(self, sample_unsigned, hasher):
        assert hasher.hash_hex(sample_unsigned) == hex(hasher.hash(sample_unsigned))


# ============================================================================
# Test Against starknet-py
# ============================================================================

def starknet_py_hash(tx, chain_id: int) -> int:
    """Hash the same transaction with starknet-py's invoke v3 hasher."""
    bounds = tx.resource_bounds
    common = CommonTransactionV3Fields(
        tx_prefix=TransactionHashPrefix.INVOKE,
        version=3,
        address=tx.sender_address,
        tip=tx.tip,
        resource_bounds=ResourceBoundsMapping(
            l1_gas=SnResourceBounds(bounds.l1_gas.max_amount, bounds.l1_gas.max_price_per_unit),
            l1_data_gas=SnResourceBounds(bounds.l1_data_gas.max_amount, bounds.l1_data_gas.max_price_per_unit),
            l2_gas=SnResourceBounds(bounds.l2_gas.max_amount, bounds.l2_gas.max_price_per_unit),
        ),
        paymaster_data=list(tx.paymaster_data),
        chain_id=chain_id,
        nonce=tx.nonce,
        nonce_data_availability_mode=DAMode(tx.nonce_data_availability_mode.as_int),
        fee_data_availability_mode=DAMode(tx.fee_data_availability_mode.as_int),
    )
    return compute_invoke_v3_transaction_hash(
        account_deployment_data=list(tx.account_deployment_data),
        calldata=list(tx.calldata),
        common_fields=common,
    )


class TestAgainstStarknetPy:
    """The hash agrees with starknet-py for non-default fields."""

    def test_default_fields(self, sample_unsigned):
        assert compute_transaction_hash(sample_unsigned, SEPOLIA_CHAIN_ID) == starknet_py_hash(
            sample_unsigned, SEPOLIA_CHAIN_ID
        )

    def test_tip_paymaster_and_l2_modes(self, sample_unsigned):
        tx = replace(
            sample_unsigned,
            tip=7,
            paymaster_data=(9,),
            nonce_data_availability_mode=DataAvailabilityMode.L2,
            fee_data_availability_mode=DataAvailabilityMode.L2,
        )

        assert compute_transaction_hash(tx, SEPOLIA_CHAIN_ID) == starknet_py_hash(tx, SEPOLIA_CHAIN_ID)

    def test_mixed_modes_and_deployment_data(self, sample_unsigned):
        tx = replace(
            sample_unsigned,
            account_deployment_data=(0x123, 0x456),
            nonce_data_availability_mode=DataAvailabilityMode.L2,
        )

        assert compute_transaction_hash(tx, SEPOLIA_CHAIN_ID) == starknet_py_hash(tx, SEPOLIA_CHAIN_ID)
