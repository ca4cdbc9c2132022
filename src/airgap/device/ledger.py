"""
Starknet Ledger application client.

Speaks the APDU protocol of the Starknet app and normalises its answers
into plain integers right here, so nothing deeper in the pipeline has to
care which byte layout a given firmware or emulator produced.
"""

from typing import Any, List, Tuple

import structlog

from airgap.core.felt import FIELD_PRIME
from airgap.device.transport import DeviceTransport
from airgap.errors import (
    AppNotReadyError,
    ConfigurationError,
    DeviceError,
    MalformedResponseError,
    UserRejectedError,
)

logger = structlog.get_logger(__name__)

CLA = 0x5A

INS_GET_VERSION = 0x00
INS_GET_PUBLIC_KEY = 0x01
INS_SIGN_HASH = 0x02

# Sign hash is sent in two frames: derivation path, then the hash
P1_SIGN_PATH = 0x00
P1_SIGN_HASH = 0x01

SW_OK = 0x9000
SW_USER_REJECTED = 0x6985

# Locked device, dashboard shown instead of the app, or wrong app open
SW_APP_NOT_READY = frozenset({0x6E00, 0x6E01, 0x6511, 0x5515, 0x6D00})

HARDENED = 0x80000000

SIGNATURE_LENGTH_PREFIX = 0x41
UNCOMPRESSED_POINT_PREFIX = 0x04
DER_SEQUENCE = 0x30
DER_INTEGER = 0x02

COORDINATE_LENGTH = 32


def parse_derivation_path(path: str) -> List[int]:
    """
    Parse an m/a'/b'/c path into u32 components.

    Hardened components are marked with ' or h.

    Raises:
        ConfigurationError: If the path is malformed
    """
    parts = path.strip().split("/")
    if parts and parts[0] == "m":
        parts = parts[1:]
    if not parts or parts == [""]:
        raise ConfigurationError(f"Invalid derivation path: {path!r}")

    components = []
    for part in parts:
        hardened = part.endswith(("'", "h", "H"))
        digits = part[:-1] if hardened else part
        if not digits.isdigit():
            raise ConfigurationError(f"Invalid derivation path component {part!r} in {path!r}")
        index = int(digits)
        if index >= HARDENED:
            raise ConfigurationError(f"Derivation path component out of range: {part!r}")
        components.append(index | HARDENED if hardened else index)
    return components


def encode_derivation_path(path: str) -> bytes:
    return b"".join(c.to_bytes(4, "big") for c in parse_derivation_path(path))


def encode_hash(message_hash: int) -> bytes:
    """The app takes the 252-bit hash left-aligned in 32 bytes."""
    return (message_hash << 4).to_bytes(32, "big")


def build_apdu(ins: int, p1: int = 0, p2: int = 0, data: bytes = b"") -> bytes:
    if len(data) > 255:
        raise ValueError("APDU payload too long")
    return bytes([CLA, ins, p1, p2, len(data)]) + data


def check_status_word(status_word: int, operation: str) -> None:
    """Map a device status word to the error taxonomy."""
    if status_word == SW_OK:
        return
    if status_word == SW_USER_REJECTED:
        raise UserRejectedError(f"{operation} rejected on device", return_code=status_word)
    if status_word in SW_APP_NOT_READY:
        raise AppNotReadyError(
            "Starknet app not open on device (unlock the device and open the app)",
            return_code=status_word,
        )
    raise DeviceError(f"{operation} failed", return_code=status_word)


# =============================================================================
# Response normalisation
# =============================================================================

def _as_bytes(value: Any, what: str) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        try:
            return bytes.fromhex(text)
        except ValueError:
            raise MalformedResponseError(f"{what} is not valid hex: {value!r}")
    if isinstance(value, list) and all(isinstance(b, int) for b in value):
        try:
            return bytes(value)
        except ValueError:
            raise MalformedResponseError(f"{what} is not a byte array")
    raise MalformedResponseError(f"Unexpected {what} type: {type(value).__name__}")


def _as_scalar(value: Any, what: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        number = value
    else:
        number = int.from_bytes(_as_bytes(value, what), "big")
    if number <= 0 or number >= FIELD_PRIME:
        raise MalformedResponseError(f"{what} is outside the field range")
    return number


def normalize_public_key(payload: Any) -> int:
    """
    Extract the Stark public key (the x coordinate) from a device answer.

    Accepted shapes:
        65 bytes 04 || x || y, optionally preceded by a 0x41 length byte
        33 bytes compressed point 02|03 || x
        32 bytes x
        a dict holding one of the above under publicKey / public_key
    """
    if isinstance(payload, dict):
        for key in ("publicKey", "public_key"):
            if key in payload:
                return normalize_public_key(payload[key])
        raise MalformedResponseError(f"Public key missing in device response: {sorted(payload)}")

    data = _as_bytes(payload, "public key")

    if len(data) == 2 * COORDINATE_LENGTH + 2 and data[0] == SIGNATURE_LENGTH_PREFIX:
        data = data[1:]

    if len(data) == 2 * COORDINATE_LENGTH + 1 and data[0] == UNCOMPRESSED_POINT_PREFIX:
        x = data[1:1 + COORDINATE_LENGTH]
    elif len(data) == COORDINATE_LENGTH + 1 and data[0] in (0x02, 0x03):
        x = data[1:]
    elif len(data) == COORDINATE_LENGTH:
        x = data
    else:
        raise MalformedResponseError(
            f"Unexpected public key encoding ({len(data)} bytes): {data.hex()}"
        )

    return _as_scalar(x, "public key")


def _parse_der_signature(data: bytes) -> Tuple[int, int]:
    """Parse SEQUENCE { INTEGER r, INTEGER s } with short-form lengths."""
    try:
        if data[0] != DER_SEQUENCE or data[1] != len(data) - 2:
            raise MalformedResponseError("Invalid DER signature header")
        offset = 2
        values = []
        for _ in range(2):
            if data[offset] != DER_INTEGER:
                raise MalformedResponseError("Invalid DER integer tag")
            length = data[offset + 1]
            start = offset + 2
            values.append(int.from_bytes(data[start:start + length], "big"))
            offset = start + length
    except IndexError:
        raise MalformedResponseError(f"Truncated DER signature: {data.hex()}")
    if offset != len(data):
        raise MalformedResponseError("Trailing bytes after DER signature")
    return values[0], values[1]


def normalize_signature(payload: Any) -> Tuple[int, int]:
    """
    Extract (r, s) from a device answer.

    Accepted shapes:
        0x41 || r (32) || s (32) || v (1)
        r (32) || s (32) [|| v (1)]
        DER SEQUENCE of two INTEGERs
        a dict with r and s as bytes, hex or ints
    """
    if isinstance(payload, dict):
        if "r" not in payload or "s" not in payload:
            raise MalformedResponseError(
                f"Signature missing r/s in device response: {sorted(payload)}"
            )
        return _as_scalar(payload["r"], "signature r"), _as_scalar(payload["s"], "signature s")

    data = _as_bytes(payload, "signature")
    if not data:
        raise MalformedResponseError("Empty signature response")

    if data[0] == DER_SEQUENCE and len(data) not in (64, 65):
        r, s = _parse_der_signature(data)
    elif len(data) == 2 * COORDINATE_LENGTH + 2 and data[0] == SIGNATURE_LENGTH_PREFIX:
        r = int.from_bytes(data[1:33], "big")
        s = int.from_bytes(data[33:65], "big")
    elif len(data) in (2 * COORDINATE_LENGTH, 2 * COORDINATE_LENGTH + 1):
        r = int.from_bytes(data[0:32], "big")
        s = int.from_bytes(data[32:64], "big")
    else:
        raise MalformedResponseError(
            f"Unexpected signature encoding ({len(data)} bytes): {data.hex()}"
        )

    return _as_scalar(r, "signature r"), _as_scalar(s, "signature s")


class LedgerStarknetApp:
    """
    APDU client for the Starknet Ledger application.

    Usage:
        async with LedgerStarknetApp(transport) as app:
            version = await app.get_app_version()
            public_key = await app.get_public_key(path)
            r, s = await app.sign_hash(path, tx_hash)
    """

    def __init__(self, transport: DeviceTransport):
        self.transport = transport

    async def __aenter__(self) -> "LedgerStarknetApp":
        await self.transport.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.transport.close()

    async def _exchange(self, operation: str, ins: int, p1: int = 0, data: bytes = b"") -> bytes:
        apdu = build_apdu(ins, p1=p1, data=data)
        response, status_word = await self.transport.exchange(apdu)
        logger.debug(
            "apdu_exchange",
            operation=operation,
            ins=ins,
            p1=p1,
            status_word=f"0x{status_word:04x}",
            response_length=len(response),
        )
        check_status_word(status_word, operation)
        return response

    async def get_app_version(self) -> str:
        response = await self._exchange("Get version", INS_GET_VERSION)
        if len(response) < 3:
            raise MalformedResponseError(f"Unexpected version response: {response.hex()}")
        return f"{response[0]}.{response[1]}.{response[2]}"

    async def get_public_key(self, path: str, display: bool = False) -> int:
        """
        Derive the Stark public key at a path.

        Args:
            path: Derivation path
            display: Also show the key on the device screen for confirmation
        """
        response = await self._exchange(
            "Get public key",
            INS_GET_PUBLIC_KEY,
            p1=0x01 if display else 0x00,
            data=encode_derivation_path(path),
        )
        return normalize_public_key(response)

    async def sign_hash(self, path: str, message_hash: int) -> Tuple[int, int]:
        """
        Blind-sign a hash with the key at a path.

        The device shows the hash and waits for the user to approve.

        Returns:
            Tuple of (r, s)
        """
        if not 0 <= message_hash < FIELD_PRIME:
            raise ValueError("Hash is not a field element")

        await self._exchange(
            "Sign hash",
            INS_SIGN_HASH,
            p1=P1_SIGN_PATH,
            data=encode_derivation_path(path),
        )
        response = await self._exchange(
            "Sign hash",
            INS_SIGN_HASH,
            p1=P1_SIGN_HASH,
            data=encode_hash(message_hash),
        )
        return normalize_signature(response)
