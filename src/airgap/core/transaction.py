"""
Transaction models.

Represents invoke v3 transactions as they travel between the builder,
the signing machines and the broadcaster. Values are held internally as
field elements (ints) and rendered as hex strings in artifacts.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from airgap.core.felt import (
    felt_to_hex,
    felts_to_hex,
    to_bounded_int,
    to_felt,
    to_felts,
)
from airgap.errors import ValidationError

TRANSACTION_TYPE = "INVOKE"
TRANSACTION_VERSION = "0x3"

# Metadata kept only so a human or device can render the calls.
DISPLAY_ONLY_FIELDS = ("entrypoint_name", "contract_address", "multicall_info")

# Fields covered by the transaction hash, in artifact order.
HASHED_FIELDS = (
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
)

# Exact key set of an INVOKE_TXN_V3 on the wire.
WIRE_FIELDS = HASHED_FIELDS + ("signature",)


class DataAvailabilityMode(str, Enum):
    """Where the data of a resource class is posted."""
    L1 = "L1"
    L2 = "L2"

    @property
    def as_int(self) -> int:
        return 0 if self is DataAvailabilityMode.L1 else 1

    @classmethod
    def parse(cls, value: Any, name: str) -> "DataAvailabilityMode":
        if isinstance(value, cls):
            return value
        if value in (0, "0", "0x0"):
            return cls.L1
        if value in (1, "1", "0x1"):
            return cls.L2
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValidationError(f"{name}: unknown data availability mode {value!r}")


@dataclass(frozen=True)
class Call:
    """
    A single contract call produced by an upstream command.

    Attributes:
        contract_address: Target contract
        entrypoint: Function name, or a selector given as hex
        calldata: Raw arguments, each convertible to a field element
    """
    contract_address: str
    entrypoint: str
    calldata: Tuple[Any, ...] = ()

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> "Call":
        """Parse one entry of a multicall configuration file."""
        if not isinstance(data, dict):
            raise ValidationError(f"Call {index + 1}: expected an object")
        if not data.get("contract_address"):
            raise ValidationError(f"Call {index + 1}: missing contract_address")
        if not data.get("entrypoint"):
            raise ValidationError(f"Call {index + 1}: missing entrypoint")
        calldata = data.get("calldata")
        if calldata is None or not isinstance(calldata, list):
            raise ValidationError(f"Call {index + 1}: calldata must be an array")
        return cls(
            contract_address=str(data["contract_address"]),
            entrypoint=str(data["entrypoint"]),
            calldata=tuple(calldata),
        )

    def to_dict(self) -> dict:
        return {
            "contract_address": self.contract_address,
            "entrypoint": self.entrypoint,
            "calldata": list(self.calldata),
        }


@dataclass(frozen=True)
class ResourceBound:
    """Maximum quantity (u64) and unit price (u128) for one resource class."""
    max_amount: int
    max_price_per_unit: int

    @classmethod
    def from_dict(cls, data: Any, name: str) -> "ResourceBound":
        if not isinstance(data, dict):
            raise ValidationError(f"resource_bounds.{name}: expected an object")
        for key in ("max_amount", "max_price_per_unit"):
            if data.get(key) is None:
                raise ValidationError(f"resource_bounds.{name}: missing {key}")
        return cls(
            max_amount=to_bounded_int(data["max_amount"], 64, f"{name}.max_amount"),
            max_price_per_unit=to_bounded_int(
                data["max_price_per_unit"], 128, f"{name}.max_price_per_unit"
            ),
        )

    def to_dict(self) -> dict:
        return {
            "max_amount": felt_to_hex(self.max_amount),
            "max_price_per_unit": felt_to_hex(self.max_price_per_unit),
        }


@dataclass(frozen=True)
class ResourceBounds:
    """Bounds for the three resource classes of a v3 transaction."""
    l1_gas: ResourceBound
    l2_gas: ResourceBound
    l1_data_gas: ResourceBound

    @classmethod
    def from_dict(cls, data: Any) -> "ResourceBounds":
        if not isinstance(data, dict):
            raise ValidationError("resource_bounds: expected an object")
        missing = [k for k in ("l1_gas", "l2_gas", "l1_data_gas") if k not in data]
        if missing:
            raise ValidationError(f"resource_bounds: missing {', '.join(missing)}")
        return cls(
            l1_gas=ResourceBound.from_dict(data["l1_gas"], "l1_gas"),
            l2_gas=ResourceBound.from_dict(data["l2_gas"], "l2_gas"),
            l1_data_gas=ResourceBound.from_dict(data["l1_data_gas"], "l1_data_gas"),
        )

    def to_dict(self) -> dict:
        return {
            "l1_gas": self.l1_gas.to_dict(),
            "l2_gas": self.l2_gas.to_dict(),
            "l1_data_gas": self.l1_data_gas.to_dict(),
        }


@dataclass(frozen=True)
class UnsignedTransaction:
    """
    Canonical unsigned invoke v3 transaction.

    Created once by the builder and never mutated afterwards; signers only
    attach a signature through SignedTransaction.

    Attributes:
        sender_address: Account sending the transaction
        calldata: The account's __execute__ calldata (multicall encoded)
        nonce: Account nonce the transaction is built against
        resource_bounds: Gas limits and prices for L1 gas, L2 gas, L1 data
        tip: Priority tip
        paymaster_data: Sponsorship data, empty unless sponsored
        account_deployment_data: Empty for deployed accounts
        nonce_data_availability_mode: DA mode of the nonce
        fee_data_availability_mode: DA mode of the fee
        timestamp: Local creation time in milliseconds (informational)
        entrypoint_name: Display-only, single call entrypoint
        contract_address: Display-only, single call target
        multicall_info: Display-only, list of calls for multicalls
    """

    sender_address: int
    calldata: Tuple[int, ...]
    nonce: int
    resource_bounds: ResourceBounds
    tip: int = 0
    paymaster_data: Tuple[int, ...] = ()
    account_deployment_data: Tuple[int, ...] = ()
    nonce_data_availability_mode: DataAvailabilityMode = DataAvailabilityMode.L1
    fee_data_availability_mode: DataAvailabilityMode = DataAvailabilityMode.L1
    timestamp: Optional[int] = None

    entrypoint_name: Optional[str] = None
    contract_address: Optional[str] = None
    multicall_info: Optional[Tuple[dict, ...]] = None

    type: str = field(default=TRANSACTION_TYPE)
    version: str = field(default=TRANSACTION_VERSION)

    @classmethod
    def from_dict(cls, data: dict) -> "UnsignedTransaction":
        """
        Parse and validate an unsigned transaction record.

        Args:
            data: Decoded JSON artifact (a signature key, if any, is ignored)

        Returns:
            UnsignedTransaction instance

        Raises:
            ValidationError: On missing fields or wrong type/version
            EncodingError: On values that are not field elements
        """
        if not isinstance(data, dict):
            raise ValidationError("Transaction must be a JSON object")

        if "signatures" in data:
            raise ValidationError(
                "Transaction contains a 'signatures' field. Only 'signature' is allowed."
            )

        if data.get("type") != TRANSACTION_TYPE:
            raise ValidationError("Transaction must be an INVOKE transaction")

        if data.get("version") != TRANSACTION_VERSION:
            raise ValidationError("Transaction must be version 0x3")

        for required in (
            "sender_address",
            "calldata",
            "nonce",
            "resource_bounds",
            "nonce_data_availability_mode",
            "fee_data_availability_mode",
        ):
            if data.get(required) is None:
                raise ValidationError(f"Transaction must have {required}")

        if not isinstance(data["calldata"], list):
            raise ValidationError("INVOKE transaction must have calldata array")

        multicall_info = data.get("multicall_info")
        if multicall_info is not None:
            if not isinstance(multicall_info, list):
                raise ValidationError("multicall_info must be an array")
            multicall_info = tuple(multicall_info)

        return cls(
            sender_address=to_felt(data["sender_address"], "sender_address"),
            calldata=to_felts(data["calldata"], "calldata"),
            nonce=to_felt(data["nonce"], "nonce"),
            resource_bounds=ResourceBounds.from_dict(data["resource_bounds"]),
            tip=to_bounded_int(data.get("tip", 0), 64, "tip"),
            paymaster_data=to_felts(data.get("paymaster_data") or [], "paymaster_data"),
            account_deployment_data=to_felts(
                data.get("account_deployment_data") or [], "account_deployment_data"
            ),
            nonce_data_availability_mode=DataAvailabilityMode.parse(
                data["nonce_data_availability_mode"], "nonce_data_availability_mode"
            ),
            fee_data_availability_mode=DataAvailabilityMode.parse(
                data["fee_data_availability_mode"], "fee_data_availability_mode"
            ),
            timestamp=data.get("timestamp"),
            entrypoint_name=data.get("entrypoint_name"),
            contract_address=data.get("contract_address"),
            multicall_info=multicall_info,
        )

    def to_dict(self) -> dict:
        """Render the artifact form, including display-only fields when set."""
        result: Dict[str, Any] = {
            "type": self.type,
            "version": self.version,
            "sender_address": felt_to_hex(self.sender_address),
            "calldata": felts_to_hex(self.calldata),
            "nonce": felt_to_hex(self.nonce),
            "resource_bounds": self.resource_bounds.to_dict(),
            "tip": felt_to_hex(self.tip),
            "paymaster_data": felts_to_hex(self.paymaster_data),
            "account_deployment_data": felts_to_hex(self.account_deployment_data),
            "nonce_data_availability_mode": self.nonce_data_availability_mode.value,
            "fee_data_availability_mode": self.fee_data_availability_mode.value,
        }
        if self.timestamp is not None:
            result["timestamp"] = self.timestamp
        if self.entrypoint_name is not None:
            result["entrypoint_name"] = self.entrypoint_name
        if self.contract_address is not None:
            result["contract_address"] = self.contract_address
        if self.multicall_info is not None:
            result["multicall_info"] = list(self.multicall_info)
        return result

    def without_display_fields(self) -> "UnsignedTransaction":
        return replace(self, entrypoint_name=None, contract_address=None, multicall_info=None)

    @property
    def call_count(self) -> int:
        """Number of calls encoded in the calldata (first multicall element)."""
        return self.calldata[0] if self.calldata else 0


@dataclass(frozen=True)
class SignedTransaction:
    """
    An unsigned transaction plus its signature field.

    Signature shapes:
        [r, s] - single-signer account
        [pubkey_1, r_1, s_1, pubkey_2, ...] - threshold multisig account
    """

    transaction: UnsignedTransaction
    signature: Tuple[int, ...]

    @classmethod
    def from_dict(cls, data: dict) -> "SignedTransaction":
        if not isinstance(data, dict):
            raise ValidationError("Transaction must be a JSON object")
        signature = data.get("signature")
        if not isinstance(signature, list) or not signature:
            raise ValidationError("Transaction must have a valid signature array")
        return cls(
            transaction=UnsignedTransaction.from_dict(data),
            signature=to_felts(signature, "signature"),
        )

    def to_dict(self) -> dict:
        result = self.transaction.to_dict()
        result["signature"] = felts_to_hex(self.signature)
        return result

    def to_rpc_payload(self) -> dict:
        """
        Build the INVOKE_TXN_V3 object sent to the node.

        Only wire fields survive; display-only metadata and the local
        timestamp are dropped because the node rejects unknown keys.
        """
        full = self.to_dict()
        return {key: full[key] for key in WIRE_FIELDS}

    @property
    def is_multisig(self) -> bool:
        return len(self.signature) != 2


def strip_display_fields(data: dict) -> dict:
    """Return a copy of an artifact dict without display-only metadata."""
    return {k: v for k, v in data.items() if k not in DISPLAY_ONLY_FIELDS}


def non_signature_fields(data: dict) -> List[str]:
    """
    Keys that must agree between partial signatures of one transaction.

    Hashed fields come first, in artifact order, followed by any
    remaining metadata keys.
    """
    extra = sorted(k for k in data if k not in HASHED_FIELDS and k != "signature")
    return list(HASHED_FIELDS) + extra
