"""
Test suite for unsigned transaction construction.

Tests call encoding, multicall aggregation and the artifact written for signers.
"""

import pytest
from starknet_py.hash.selector import get_selector_from_name

from airgap.core.felt import FIELD_PRIME, encode_short_string, to_felt
from airgap.core.transaction import (
    Call,
    DataAvailabilityMode,
    SignedTransaction,
    UnsignedTransaction,
    strip_display_fields,
)
from airgap.errors import ConfigurationError, EncodingError, ValidationError
from airgap.tx.builder import (
    ExecutionOptions,
    encode_multicall,
    entrypoint_selector,
    load_calls,
    resolve_resource_bounds,
)

from conftest import SENDER_ADDRESS, TARGET_ADDRESS, SECOND_TARGET_ADDRESS, make_resource_bounds


# ============================================================================
# Test Field Elements
# ============================================================================

class TestFieldElements:
    """Tests for field element parsing."""

    def test_parses_hex_and_decimal(self):
        assert to_felt("0x1f") == 31
        assert to_felt("31") == 31
        assert to_felt(31) == 31

    def test_rejects_out_of_range(self):
        with pytest.raises(EncodingError, match="outside the field range"):
            to_felt(FIELD_PRIME)
        with pytest.raises(EncodingError):
            to_felt(-1)

    def test_rejects_garbage(self):
        with pytest.raises(EncodingError, match="cannot parse"):
            to_felt("0xnothex", "calldata[0]")
        with pytest.raises(EncodingError, match="booleans"):
            to_felt(True)
        with pytest.raises(EncodingError, match="unsupported type"):
            to_felt(1.5)

    def test_short_string(self):
        assert encode_short_string("SN_MAIN") == 0x534E5F4D41494E
        with pytest.raises(EncodingError):
            encode_short_string("x" * 32)


# ============================================================================
# Test Call Encoding
# ============================================================================

class TestCallEncoding:
    """Tests for call and multicall encoding."""

    def test_selector_from_name(self):
        assert entrypoint_selector("transfer") == get_selector_from_name("transfer")

    def test_hex_selector_passthrough(self):
        assert entrypoint_selector("0x83afd3f4caedc6eebf44246fe54e38c95e3179a5ec9ea81740eca5b482d12e") == (
            0x83AFD3F4CAEDC6EEBF44246FE54E38C95E3179A5EC9EA81740ECA5B482D12E
        )

    def test_invalid_entrypoint_name(self):
        with pytest.raises(EncodingError, match="Invalid entrypoint"):
            entrypoint_selector("not a name")

    def test_single_call_uses_multicall_layout(self, sample_call):
        calldata = encode_multicall([sample_call])

        assert calldata == (
            1,
            int(TARGET_ADDRESS, 16),
            get_selector_from_name("transfer"),
            2,
            1,
            2,
        )

    def test_multicall_preserves_order(self, sample_calls):
        calldata = encode_multicall(sample_calls)

        assert calldata[0] == 2
        # First call: to, selector, len=2, 0x1, 0x2
        assert calldata[1] == int(TARGET_ADDRESS, 16)
        assert calldata[3:6] == (2, 1, 2)
        # Second call follows directly
        assert calldata[6] == int(SECOND_TARGET_ADDRESS, 16)
        assert calldata[7] == get_selector_from_name("approve")
        assert calldata[8:] == (3, 0xABC, 100, 0)

    def test_invalid_calldata_element(self):
        call = Call(TARGET_ADDRESS, "transfer", ("0x1", "hello"))

        with pytest.raises(EncodingError, match=r"calls\[0\].calldata\[1\]"):
            encode_multicall([call])


# ============================================================================
# Test Calls Configuration
# ============================================================================

class TestCallsConfiguration:
    """Tests for the multicall configuration file format."""

    def test_load_calls(self):
        calls = load_calls({
            "calls": [
                {"contract_address": TARGET_ADDRESS, "entrypoint": "transfer", "calldata": ["0x1"]},
                {"contract_address": SECOND_TARGET_ADDRESS, "entrypoint": "approve", "calldata": []},
            ]
        })

        assert [c.entrypoint for c in calls] == ["transfer", "approve"]
        assert calls[0].calldata == ("0x1",)

    def test_missing_calls_array(self):
        with pytest.raises(ValidationError, match='"calls" array'):
            load_calls({"call": []})

    def test_empty_calls(self):
        with pytest.raises(ValidationError, match="At least one call"):
            load_calls({"calls": []})

    def test_entry_missing_field(self):
        with pytest.raises(ValidationError, match="Call 2: missing entrypoint"):
            load_calls({
                "calls": [
                    {"contract_address": TARGET_ADDRESS, "entrypoint": "a", "calldata": []},
                    {"contract_address": TARGET_ADDRESS, "calldata": []},
                ]
            })

    def test_calldata_must_be_array(self):
        with pytest.raises(ValidationError, match="calldata must be an array"):
            load_calls({"calls": [{"contract_address": TARGET_ADDRESS, "entrypoint": "a", "calldata": "0x1"}]})


# ============================================================================
# Test Resource Bounds
# ============================================================================

class TestResourceBounds:
    """Tests for resolving resource bounds from flat options."""

    def test_all_values_present(self):
        bounds = resolve_resource_bounds(
            l1_gas_max_amount="0x10",
            l1_gas_max_price_per_unit="100",
            l2_gas_max_amount=20,
            l2_gas_max_price_per_unit=200,
            l1_data_max_amount="0x30",
            l1_data_max_price_per_unit="0x300",
        )

        assert bounds.l1_gas.max_amount == 16
        assert bounds.l2_gas.max_price_per_unit == 200
        assert bounds.l1_data_gas.max_price_per_unit == 0x300

    def test_missing_values_are_listed(self):
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_resource_bounds(l1_gas_max_amount=1, l1_gas_max_price_per_unit=1)

        message = str(exc_info.value)
        assert "l2-gas-max-amount" in message
        assert "l1-data-max-price-per-unit" in message

    def test_amount_must_fit_u64(self):
        with pytest.raises(EncodingError, match="u64"):
            resolve_resource_bounds(
                l1_gas_max_amount=2**64,
                l1_gas_max_price_per_unit=1,
                l2_gas_max_amount=1,
                l2_gas_max_price_per_unit=1,
                l1_data_max_amount=1,
                l1_data_max_price_per_unit=1,
            )


# ============================================================================
# Test Builder
# ============================================================================

class TestUnsignedTransactionBuilder:
    """Tests for building unsigned transactions."""

    def test_single_call_record(self, builder, sample_call, execution_options):
        tx = builder.build([sample_call], execution_options)

        assert tx.type == "INVOKE"
        assert tx.version == "0x3"
        assert tx.sender_address == int(SENDER_ADDRESS, 16)
        assert tx.nonce == 5
        assert tx.tip == 0
        assert tx.paymaster_data == ()
        assert tx.account_deployment_data == ()
        assert tx.nonce_data_availability_mode == DataAvailabilityMode.L1
        assert tx.fee_data_availability_mode == DataAvailabilityMode.L1
        assert tx.entrypoint_name == "transfer"
        assert tx.contract_address == TARGET_ADDRESS
        assert tx.multicall_info is None
        assert tx.call_count == 1

    def test_timestamp_in_milliseconds(self, builder, sample_call, execution_options):
        tx = builder.build([sample_call], execution_options)

        assert tx.timestamp == 1_760_000_000_500

    def test_multicall_display_info(self, builder, sample_calls, execution_options):
        tx = builder.build(sample_calls, execution_options)

        assert tx.entrypoint_name is None
        assert tx.contract_address is None
        assert len(tx.multicall_info) == 2
        assert tx.multicall_info[1]["entrypoint"] == "approve"
        assert tx.multicall_info[1]["calldata"] == ["0xabc", "0x64", "0x0"]

    def test_no_calls(self, builder, execution_options):
        with pytest.raises(ValidationError, match="without calls"):
            builder.build([], execution_options)

    def test_missing_nonce(self, builder, sample_call):
        options = ExecutionOptions(sender_address=SENDER_ADDRESS, resource_bounds=make_resource_bounds())

        with pytest.raises(ConfigurationError, match="Nonce"):
            builder.build([sample_call], options)

    def test_missing_resource_bounds(self, builder, sample_call):
        options = ExecutionOptions(sender_address=SENDER_ADDRESS, nonce=1)

        with pytest.raises(ConfigurationError, match="Resource bounds"):
            builder.build([sample_call], options)

    def test_missing_sender(self, builder, sample_call):
        options = ExecutionOptions(nonce=1, resource_bounds=make_resource_bounds())

        with pytest.raises(ConfigurationError, match="Sender"):
            builder.build([sample_call], options)

    def test_unencodable_calldata(self, builder, execution_options):
        call = Call(TARGET_ADDRESS, "transfer", (str(FIELD_PRIME),))

        with pytest.raises(EncodingError):
            builder.build([call], execution_options)

    def test_optional_sponsorship_fields(self, builder, sample_call, execution_options):
        execution_options.paymaster_data = ["0x1", "0x2"]
        execution_options.account_deployment_data = ["0x3"]
        execution_options.tip = "0x10"

        tx = builder.build([sample_call], execution_options)

        assert tx.paymaster_data == (1, 2)
        assert tx.account_deployment_data == (3,)
        assert tx.tip == 16

    @pytest.mark.asyncio
    async def test_build_and_save(self, builder, memory_store, sample_call, execution_options):
        tx, name = await builder.build_and_save([sample_call], execution_options, operation="transfer")

        assert name.startswith("txs/transfer_")
        assert name.endswith(".json")
        saved = memory_store.artifacts[name]
        assert saved == tx.to_dict()
        assert saved["calldata"][0] == "0x1"
        assert saved["nonce"] == "0x5"

    @pytest.mark.asyncio
    async def test_build_and_save_refuses_overwrite(self, builder, sample_call, execution_options):
        await builder.build_and_save([sample_call], execution_options, output="txs/fixed.json")

        with pytest.raises(ValidationError, match="already exists"):
            await builder.build_and_save([sample_call], execution_options, output="txs/fixed.json")

        _, name = await builder.build_and_save(
            [sample_call], execution_options, output="txs/fixed.json", overwrite=True
        )
        assert name == "txs/fixed.json"


# ============================================================================
# Test Transaction Records
# ============================================================================

class TestTransactionRecords:
    """Tests for parsing and rendering transaction artifacts."""

    def test_artifact_round_trip(self, sample_unsigned):
        parsed = UnsignedTransaction.from_dict(sample_unsigned.to_dict())

        assert parsed == sample_unsigned

    def test_artifact_shape(self, sample_unsigned):
        data = sample_unsigned.to_dict()

        assert data["resource_bounds"]["l1_gas"] == {
            "max_amount": "0x186a0",
            "max_price_per_unit": "0x5af3107a4000",
        }
        assert data["nonce_data_availability_mode"] == "L1"
        assert "signature" not in data

    def test_rejects_wrong_type(self, sample_unsigned):
        data = sample_unsigned.to_dict()
        data["type"] = "DECLARE"

        with pytest.raises(ValidationError, match="INVOKE"):
            UnsignedTransaction.from_dict(data)

    def test_rejects_wrong_version(self, sample_unsigned):
        data = sample_unsigned.to_dict()
        data["version"] = "0x1"

        with pytest.raises(ValidationError, match="version 0x3"):
            UnsignedTransaction.from_dict(data)

    def test_rejects_missing_field(self, sample_unsigned):
        data = sample_unsigned.to_dict()
        del data["fee_data_availability_mode"]

        with pytest.raises(ValidationError, match="fee_data_availability_mode"):
            UnsignedTransaction.from_dict(data)

    def test_rejects_legacy_signatures_field(self, sample_unsigned):
        data = sample_unsigned.to_dict()
        data["signatures"] = []

        with pytest.raises(ValidationError, match="'signatures'"):
            UnsignedTransaction.from_dict(data)

    def test_strip_display_fields(self, builder, sample_calls, execution_options):
        data = builder.build(sample_calls, execution_options).to_dict()

        stripped = strip_display_fields(data)

        assert "multicall_info" not in stripped
        assert stripped["calldata"] == data["calldata"]

    def test_rpc_payload_keys(self, sample_unsigned):
        signed = SignedTransaction(sample_unsigned, (1, 2))

        payload = signed.to_rpc_payload()

        assert set(payload) == {
            "type",
            "version",
            "sender_address",
            "calldata",
            "nonce",
            "resource_bounds",
            "tip",
            "paymaster_data",
            "account_deployment_data",
            "nonce_data_availability_mode",
            "fee_data_availability_mode",
            "signature",
        }
        assert payload["signature"] == ["0x1", "0x2"]
