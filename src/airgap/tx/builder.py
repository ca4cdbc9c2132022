"""
Unsigned Transaction Builder - constructs invoke v3 transactions offline.

Turns a list of calls and execution options into the canonical unsigned
record handed to signers, and persists it as an artifact.
"""

import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

import structlog
from starknet_py.hash.selector import get_selector_from_name

from airgap.config import AirgapConfig, get_config
from airgap.core.felt import to_bounded_int, to_felt, to_felts
from airgap.core.transaction import (
    Call,
    DataAvailabilityMode,
    ResourceBound,
    ResourceBounds,
    UnsignedTransaction,
)
from airgap.errors import AirgapError, ConfigurationError, EncodingError, ValidationError
from airgap.state.artifacts import ArtifactStore, generate_artifact_name

logger = structlog.get_logger(__name__)

RESOURCE_BOUND_OPTIONS = (
    ("l1_gas", "l1_gas_max_amount", "l1_gas_max_price_per_unit"),
    ("l2_gas", "l2_gas_max_amount", "l2_gas_max_price_per_unit"),
    ("l1_data_gas", "l1_data_max_amount", "l1_data_max_price_per_unit"),
)


@dataclass
class ExecutionOptions:
    """
    Execution parameters for an invoke transaction.

    Nonce and resource bounds have no defaults: the builder refuses to
    guess them.
    """

    sender_address: Any = None
    nonce: Any = None
    resource_bounds: Optional[ResourceBounds] = None
    tip: Any = 0
    paymaster_data: Sequence[Any] = field(default_factory=list)
    account_deployment_data: Sequence[Any] = field(default_factory=list)
    nonce_data_availability_mode: DataAvailabilityMode = DataAvailabilityMode.L1
    fee_data_availability_mode: DataAvailabilityMode = DataAvailabilityMode.L1


def resolve_resource_bounds(**values: Any) -> ResourceBounds:
    """
    Assemble resource bounds from the six flat gas options.

    Accepts keyword arguments named like the CLI flags
    (l1_gas_max_amount, l1_gas_max_price_per_unit, l2_gas_..., l1_data_...).

    Raises:
        ConfigurationError: If any of the six values is missing
    """
    missing = [
        option
        for _, amount_key, price_key in RESOURCE_BOUND_OPTIONS
        for option in (amount_key, price_key)
        if values.get(option) is None
    ]
    if missing:
        raise ConfigurationError(
            "Missing resource bounds: " + ", ".join(m.replace("_", "-") for m in missing)
        )

    bounds = {}
    for name, amount_key, price_key in RESOURCE_BOUND_OPTIONS:
        bounds[name] = ResourceBound(
            max_amount=to_bounded_int(values[amount_key], 64, amount_key),
            max_price_per_unit=to_bounded_int(values[price_key], 128, price_key),
        )
    return ResourceBounds(**bounds)


def entrypoint_selector(entrypoint: str) -> int:
    """Selector for an entrypoint name; hex input is taken as a selector."""
    if entrypoint.lower().startswith("0x"):
        return to_felt(entrypoint, "entrypoint")
    if not entrypoint.isidentifier():
        raise EncodingError(f"Invalid entrypoint name: {entrypoint!r}")
    return get_selector_from_name(entrypoint)


def encode_call(call: Call, index: int = 0) -> Tuple[int, int, Tuple[int, ...]]:
    """Encode one call as (target, selector, calldata felts)."""
    target = to_felt(call.contract_address, f"calls[{index}].contract_address")
    selector = entrypoint_selector(call.entrypoint)
    calldata = to_felts(call.calldata, f"calls[{index}].calldata")
    return target, selector, calldata


def encode_multicall(calls: Sequence[Call]) -> Tuple[int, ...]:
    """
    Encode calls for the account's __execute__ entrypoint.

    Layout: [n_calls, (to, selector, calldata_len, *calldata) * n_calls]
    """
    result: List[int] = [len(calls)]
    for index, call in enumerate(calls):
        target, selector, calldata = encode_call(call, index)
        result.extend([target, selector, len(calldata), *calldata])
    return tuple(result)


def load_calls(data: Any) -> List[Call]:
    """
    Parse a multicall configuration: {"calls": [{contract_address, entrypoint, calldata}]}.
    """
    if not isinstance(data, dict) or not isinstance(data.get("calls"), list):
        raise ValidationError('Configuration must contain a "calls" array')
    if not data["calls"]:
        raise ValidationError("At least one call must be specified in the configuration")
    return [Call.from_dict(entry, i) for i, entry in enumerate(data["calls"])]


class UnsignedTransactionBuilder:
    """
    Builds unsigned invoke v3 transactions.

    Encoding is pure: the builder never talks to the network. Nonce and
    resource bounds must be supplied by the caller.
    """

    def __init__(
        self,
        store: Optional[ArtifactStore] = None,
        config: Optional[AirgapConfig] = None,
        clock=time.time,
    ):
        """
        Initialize the builder.

        Args:
            store: Artifact store used by build_and_save
            config: Pipeline configuration
            clock: Time source for the informational timestamp
        """
        self.store = store
        self.config = config or get_config()
        self._clock = clock

    def build(self, calls: Sequence[Call], options: ExecutionOptions) -> UnsignedTransaction:
        """
        Build an unsigned transaction.

        Args:
            calls: Non-empty ordered list of calls
            options: Execution options

        Returns:
            The unsigned transaction

        Raises:
            ValidationError: If no calls are given
            ConfigurationError: If nonce, sender or resource bounds are missing
            EncodingError: If a value is not a field element
        """
        if not calls:
            raise ValidationError("Cannot build a transaction without calls")

        if options.nonce is None:
            raise ConfigurationError("Nonce is required to build an offline transaction")

        if options.resource_bounds is None:
            raise ConfigurationError("Resource bounds are required to build an offline transaction")

        if options.sender_address is None:
            raise ConfigurationError("Sender (account) address is required")

        try:
            calldata = encode_multicall(calls)

            display = {}
            if len(calls) == 1:
                display["entrypoint_name"] = calls[0].entrypoint
                display["contract_address"] = calls[0].contract_address
            else:
                display["multicall_info"] = tuple(
                    {
                        "contract_address": call.contract_address,
                        "entrypoint": call.entrypoint,
                        "calldata": [hex(v) for v in to_felts(call.calldata, "calldata")],
                    }
                    for call in calls
                )

            tx = UnsignedTransaction(
                sender_address=to_felt(options.sender_address, "sender_address"),
                calldata=calldata,
                nonce=to_felt(options.nonce, "nonce"),
                resource_bounds=options.resource_bounds,
                tip=to_bounded_int(options.tip, 64, "tip"),
                paymaster_data=to_felts(options.paymaster_data, "paymaster_data"),
                account_deployment_data=to_felts(
                    options.account_deployment_data, "account_deployment_data"
                ),
                nonce_data_availability_mode=options.nonce_data_availability_mode,
                fee_data_availability_mode=options.fee_data_availability_mode,
                timestamp=int(self._clock() * 1000),
                **display,
            )

        except AirgapError:
            raise
        except Exception as e:
            logger.error("transaction_build_failed", error=str(e))
            raise EncodingError(f"Failed to build transaction: {e}") from e

        logger.info(
            "unsigned_transaction_built",
            sender=hex(tx.sender_address),
            nonce=tx.nonce,
            call_count=len(calls),
            calldata_length=len(tx.calldata),
        )

        return tx

    async def build_and_save(
        self,
        calls: Sequence[Call],
        options: ExecutionOptions,
        operation: str = "invoke",
        output: Optional[str] = None,
        overwrite: bool = False,
    ) -> Tuple[UnsignedTransaction, str]:
        """
        Build a transaction and persist it as the artifact for signers.

        Args:
            calls: Calls to encode
            options: Execution options
            operation: Operation name used in the generated file name
            output: Explicit artifact name (generated when omitted)
            overwrite: Replace an existing artifact at `output`

        Returns:
            Tuple of (transaction, artifact name)
        """
        if self.store is None:
            raise ConfigurationError("No artifact store configured for the builder")

        tx = self.build(calls, options)
        name = output or generate_artifact_name(self.config.output_dir, operation)
        await self.store.save(name, tx.to_dict(), overwrite=overwrite)

        logger.info("unsigned_transaction_saved", artifact=name)
        return tx, name
