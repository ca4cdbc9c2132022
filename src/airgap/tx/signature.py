"""
Signature Assembler - shapes and combines transaction signatures.

Single-signer accounts expect [r, s]. Threshold multisig accounts expect
one [pubkey, r, s] group per contributing signer, concatenated.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import structlog
from poseidon_py.poseidon_hash import poseidon_hash_many

from airgap.config import AirgapConfig, get_config
from airgap.core.felt import encode_short_string, to_felts
from airgap.core.transaction import UnsignedTransaction, non_signature_fields
from airgap.errors import ConsistencyError, ValidationError
from airgap.state.artifacts import ArtifactStore, combined_artifact_name

logger = structlog.get_logger(__name__)

SINGLE_SIGNER_LENGTH = 2
MULTISIG_GROUP_LENGTH = 3

# Argent multisig identifies Starknet signers by poseidon("Starknet Signer", pubkey)
STARKNET_SIGNER_TAG = encode_short_string("Starknet Signer")


@dataclass(frozen=True)
class RawSignature:
    """
    A device signature before it is shaped for an account.

    Attributes:
        public_key: Stark public key of the signer
        r: Signature r component
        s: Signature s component
        transaction_hash: The hash that was signed
    """
    public_key: int
    r: int
    s: int
    transaction_hash: Optional[int] = None


def validate_signature_shape(signature: Sequence) -> None:
    """
    Check a signature array is [r, s] or a non-empty run of [pubkey, r, s] groups.

    Raises:
        ValidationError: For any other length
    """
    length = len(signature)
    if length == SINGLE_SIGNER_LENGTH:
        return
    if length > 0 and length % MULTISIG_GROUP_LENGTH == 0:
        return
    raise ValidationError(
        f"Malformed signature: {length} elements. Expected [r, s] or "
        "groups of [pubkey, r, s]"
    )


def format_signature(raw: RawSignature, multisig: bool) -> Tuple[int, ...]:
    """Shape a raw signature for a single-signer or multisig account."""
    if multisig:
        return (raw.public_key, raw.r, raw.s)
    return (raw.r, raw.s)


def signature_groups(signature: Sequence[int]) -> List[Tuple[int, int, int]]:
    """Split a multisig signature into (pubkey, r, s) groups."""
    if len(signature) % MULTISIG_GROUP_LENGTH != 0:
        raise ValidationError("Signature is not a sequence of [pubkey, r, s] groups")
    return [
        tuple(signature[i:i + MULTISIG_GROUP_LENGTH])
        for i in range(0, len(signature), MULTISIG_GROUP_LENGTH)
    ]


def signer_guid(public_key: int) -> int:
    return poseidon_hash_many([STARKNET_SIGNER_TAG, public_key])


class SignatureAssembler:
    """
    Formats device signatures and combines multisig partials.

    Combining keeps the caller's order unless GUID ordering is requested;
    the account contract decides which order it accepts.
    """

    def __init__(
        self,
        store: Optional[ArtifactStore] = None,
        config: Optional[AirgapConfig] = None,
    ):
        self.store = store
        self.config = config or get_config()

    def attach(
        self,
        unsigned: Union[dict, UnsignedTransaction],
        raw: RawSignature,
        multisig: bool,
    ) -> dict:
        """
        Produce a signed artifact from an unsigned one.

        The unsigned fields are copied unchanged; only `signature` is added.
        """
        data = unsigned.to_dict() if isinstance(unsigned, UnsignedTransaction) else dict(unsigned)
        if "signature" in data:
            raise ValidationError("Transaction is already signed")

        data["signature"] = [hex(v) for v in format_signature(raw, multisig)]
        logger.debug("signature_attached", multisig=multisig, length=len(data["signature"]))
        return data

    def combine(
        self,
        partials: Sequence[Tuple[str, dict]],
        order_by_signer_guid: bool = False,
    ) -> dict:
        """
        Combine partial multisig signatures into one signed transaction.

        Args:
            partials: (name, artifact) pairs, each holding exactly one
                [pubkey, r, s] group
            order_by_signer_guid: Sort groups by ascending signer GUID
                instead of keeping input order

        Returns:
            Combined signed artifact

        Raises:
            ValidationError: On a malformed partial
            ConsistencyError: If non-signature fields differ or a signer repeats
        """
        if not partials:
            raise ValidationError("No signed transactions to combine")

        groups = []
        for name, data in partials:
            groups.append((name, self._partial_group(name, data)))

        base_name, base = partials[0]
        UnsignedTransaction.from_dict(base)

        for name, data in partials[1:]:
            self._compare(base, data, base_name, name)

        seen = {}
        for name, (public_key, _, _) in groups:
            if public_key in seen:
                raise ConsistencyError(
                    f"Signer {hex(public_key)} appears in both {seen[public_key]} and {name}",
                    field="signature",
                    files=(seen[public_key], name),
                )
            seen[public_key] = name

        if order_by_signer_guid:
            groups.sort(key=lambda item: signer_guid(item[1][0]))

        signature: List[int] = []
        for name, group in groups:
            signature.extend(group)
            logger.debug("signature_group_added", artifact=name, public_key=hex(group[0]))

        combined = dict(base)
        combined["signature"] = [hex(v) for v in signature]

        logger.info(
            "signatures_combined",
            signer_count=len(groups),
            ordered_by_guid=order_by_signer_guid,
        )
        return combined

    async def combine_artifacts(
        self,
        names: Sequence[str],
        output: Optional[str] = None,
        order_by_signer_guid: bool = False,
        overwrite: bool = False,
    ) -> Tuple[dict, str]:
        """Load partials from the store, combine them and save the result."""
        if self.store is None:
            raise ValidationError("No artifact store configured for the assembler")

        partials = [(name, await self.store.load(name)) for name in names]
        combined = self.combine(partials, order_by_signer_guid=order_by_signer_guid)

        target = output or combined_artifact_name(self.config.output_dir)
        await self.store.save(target, combined, overwrite=overwrite)
        return combined, target

    def _partial_group(self, name: str, data: dict) -> Tuple[int, int, int]:
        if "signatures" in data:
            raise ValidationError(
                f"Transaction file {name} contains 'signatures' field. "
                "Only 'signature' field is allowed."
            )

        signature = data.get("signature")
        if not isinstance(signature, list):
            raise ValidationError(f"Transaction file {name} does not contain a valid signature array.")

        validate_signature_shape(signature)
        if len(signature) != MULTISIG_GROUP_LENGTH:
            raise ValidationError(
                f"Transaction file {name} has {len(signature)} signature elements. "
                "Expected exactly 3 [pubkey, r, s] from a single multisig signer."
            )

        return to_felts(signature, f"{name}.signature")

    def _compare(self, base: dict, other: dict, base_name: str, other_name: str) -> None:
        """Fail on the first non-signature field that differs."""
        for field in non_signature_fields({**base, **other}):
            if base.get(field) != other.get(field):
                raise ConsistencyError(
                    f"Transaction field '{field}' mismatch between {base_name} and {other_name}",
                    field=field,
                    files=(base_name, other_name),
                )
