"""
Signer Adapter - produces raw signatures on a hardware device.

The private key never leaves the device. The adapter computes the hash
locally, shows the operator what is being signed, and only then asks the
device to sign.
"""

from typing import Callable, List, Optional, Tuple, Union

import structlog
from starknet_py.hash.utils import verify_message_signature

from airgap.config import DEFAULT_DERIVATION_PATH
from airgap.core.felt import decode_short_string
from airgap.core.transaction import UnsignedTransaction
from airgap.device.ledger import LedgerStarknetApp
from airgap.errors import (
    ArtifactExistsError,
    ConfigurationError,
    MalformedResponseError,
    UserRejectedError,
    ValidationError,
)
from airgap.state.artifacts import ArtifactStore, signed_artifact_name
from airgap.tx.hasher import TransactionHasher
from airgap.tx.signature import RawSignature, SignatureAssembler

logger = structlog.get_logger(__name__)

# Receives the rendered summary, returns True to go ahead with signing
ReviewCallback = Callable[[str], bool]


def _chain_name(chain_id: int) -> str:
    try:
        name = decode_short_string(chain_id)
    except UnicodeDecodeError:
        return hex(chain_id)
    return name if name and name.isprintable() else hex(chain_id)


def _decode_single_call(calldata) -> Optional[List[int]]:
    """Arguments of the only call in [1, to, selector, len, *args], if well formed."""
    if len(calldata) < 4 or calldata[0] != 1:
        return None
    length = calldata[3]
    args = list(calldata[4:])
    return args if len(args) == length else None


def render_summary(
    tx: UnsignedTransaction,
    tx_hash: int,
    chain_id: int,
    public_key: Optional[int] = None,
    derivation_path: Optional[str] = None,
) -> str:
    """Human-readable description of what is about to be signed, and by which key."""
    lines = ["Transaction Details:"]
    if public_key is not None:
        lines.append(f"  Signer public key: {hex(public_key)}")
    if derivation_path is not None:
        lines.append(f"  Derivation path: {derivation_path}")
    lines += [
        f"  Type: {tx.type} v{int(tx.version, 16)}",
        f"  Network: {_chain_name(chain_id)}",
        f"  Sender: {hex(tx.sender_address)}",
        f"  Nonce: {tx.nonce}",
        f"  Tip: {tx.tip}",
    ]

    for label, bound in (
        ("L1 gas", tx.resource_bounds.l1_gas),
        ("L2 gas", tx.resource_bounds.l2_gas),
        ("L1 data gas", tx.resource_bounds.l1_data_gas),
    ):
        lines.append(
            f"  {label}: max amount {bound.max_amount}, "
            f"max price per unit {bound.max_price_per_unit}"
        )

    if tx.multicall_info:
        lines.append(f"  Calls: {len(tx.multicall_info)}")
        for i, call in enumerate(tx.multicall_info, start=1):
            lines.append(f"    Call {i}:")
            lines.append(f"      Contract: {call.get('contract_address')}")
            lines.append(f"      Entrypoint: {call.get('entrypoint')}")
            lines.append(f"      Calldata: {call.get('calldata')}")
    elif tx.entrypoint_name:
        lines.append("  Calls: 1")
        lines.append(f"      Contract: {tx.contract_address}")
        lines.append(f"      Entrypoint: {tx.entrypoint_name}")
        args = _decode_single_call(tx.calldata)
        if args is not None:
            lines.append(f"      Calldata: {[hex(a) for a in args]}")
    else:
        lines.append(f"  Calls: {tx.call_count} (no call details recorded)")
        lines.append(f"  Calldata length: {len(tx.calldata)}")

    lines.append(f"  Transaction hash: {hex(tx_hash)}")
    return "\n".join(lines)


class SignerAdapter:
    """
    Drives a hardware signer for one transaction at a time.

    Returns raw (pubkey, r, s); shaping the signature for single-signer or
    multisig accounts is left to the SignatureAssembler.
    """

    def __init__(
        self,
        app: LedgerStarknetApp,
        hasher: Optional[TransactionHasher] = None,
        review: Optional[ReviewCallback] = None,
        derivation_path: str = DEFAULT_DERIVATION_PATH,
    ):
        """
        Initialize the adapter.

        Args:
            app: Device application client
            hasher: Hasher bound to the target chain (required to sign)
            review: Blocking approval prompt, signing only proceeds on True
                (required to sign)
            derivation_path: Key path on the device
        """
        self.app = app
        self.hasher = hasher
        self.review = review
        self.derivation_path = derivation_path
        self.app_version: Optional[str] = None

    async def _start_session(self) -> None:
        self.app_version = await self.app.get_app_version()
        logger.info("device_session_opened", app_version=self.app_version)

    async def get_public_key(self, display: bool = True) -> int:
        """Read the public key at the configured path, showing it on the device."""
        async with self.app:
            await self._start_session()
            public_key = await self.app.get_public_key(self.derivation_path, display=display)

        logger.info("device_public_key", path=self.derivation_path, public_key=hex(public_key))
        return public_key

    async def sign(self, unsigned: Union[dict, UnsignedTransaction]) -> RawSignature:
        """
        Sign an unsigned transaction.

        Args:
            unsigned: Unsigned record or its artifact dict

        Returns:
            RawSignature with the device public key and (r, s)

        Raises:
            ValidationError: If the input already carries a signature
            UserRejectedError: If the operator refuses at review or on device
            AppNotReadyError: If the device is locked or the app is closed
            MalformedResponseError: If the device answer is unusable or
                does not verify against the public key
        """
        if isinstance(unsigned, dict):
            if "signature" in unsigned:
                raise ValidationError("Transaction is already signed")
            tx = UnsignedTransaction.from_dict(unsigned)
        else:
            tx = unsigned

        if self.hasher is None or self.review is None:
            raise ConfigurationError("Signing requires a transaction hasher and a review prompt")

        async with self.app:
            await self._start_session()

            public_key = await self.app.get_public_key(self.derivation_path, display=False)
            logger.info("device_public_key", path=self.derivation_path, public_key=hex(public_key))

            tx_hash = self.hasher.hash(tx)
            summary = render_summary(
                tx, tx_hash, self.hasher.chain_id,
                public_key=public_key, derivation_path=self.derivation_path,
            )

            if not self.review(summary):
                logger.info("signing_declined_at_review", tx_hash=hex(tx_hash))
                raise UserRejectedError("Transaction rejected at review prompt")

            r, s = await self.app.sign_hash(self.derivation_path, tx_hash)

        if not verify_message_signature(tx_hash, [r, s], public_key):
            raise MalformedResponseError(
                "Device signature does not verify against its public key and the transaction hash"
            )

        logger.info("transaction_signed", tx_hash=hex(tx_hash), public_key=hex(public_key))
        return RawSignature(public_key=public_key, r=r, s=s, transaction_hash=tx_hash)

    async def sign_artifact(
        self,
        store: ArtifactStore,
        name: str,
        multisig: bool = False,
        output: Optional[str] = None,
        overwrite: bool = False,
    ) -> Tuple[dict, str, RawSignature]:
        """
        Load an unsigned artifact, sign it and save the signed artifact.

        Returns:
            Tuple of (signed artifact, artifact name, raw signature)
        """
        unsigned = await store.load(name)
        target = output or signed_artifact_name(name)

        # Fail before bothering the operator if the output is taken
        if not overwrite and await store.exists(target):
            raise ArtifactExistsError(target)

        raw = await self.sign(unsigned)
        signed = SignatureAssembler().attach(unsigned, raw, multisig=multisig)
        await store.save(target, signed, overwrite=overwrite)

        logger.info("signed_transaction_saved", artifact=target, multisig=multisig)
        return signed, target, raw
