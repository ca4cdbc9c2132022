"""
Field element helpers.

Starknet represents every value in calldata, hashes and signatures as an
element of the prime field below. Artifacts store them as 0x-prefixed hex.
"""

from typing import Any, Iterable, List, Tuple

from airgap.errors import EncodingError

FIELD_PRIME = 2**251 + 17 * 2**192 + 1

MAX_SHORT_STRING_LENGTH = 31


def to_felt(value: Any, name: str = "value") -> int:
    """
    Parse a value into a field element.

    Accepts non-negative ints, hex strings ("0x..."), and decimal strings.

    Args:
        value: The value to parse
        name: Field name used in error messages

    Returns:
        The value as an int in [0, FIELD_PRIME)

    Raises:
        EncodingError: If the value is not a valid field element
    """
    if isinstance(value, bool):
        raise EncodingError(f"{name}: booleans are not field elements ({value!r})")

    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                number = int(text, 16)
            else:
                number = int(text, 10)
        except ValueError:
            raise EncodingError(f"{name}: cannot parse {value!r} as a field element")
    else:
        raise EncodingError(
            f"{name}: unsupported type {type(value).__name__} for a field element"
        )

    if number < 0 or number >= FIELD_PRIME:
        raise EncodingError(f"{name}: {value!r} is outside the field range")

    return number


def to_felts(values: Iterable[Any], name: str = "values") -> Tuple[int, ...]:
    """Parse a sequence of values into field elements."""
    if isinstance(values, (str, bytes)) or not hasattr(values, "__iter__"):
        raise EncodingError(f"{name}: expected a sequence, got {type(values).__name__}")
    return tuple(to_felt(v, f"{name}[{i}]") for i, v in enumerate(values))


def to_bounded_int(value: Any, bits: int, name: str) -> int:
    """Parse an unsigned integer that must fit in `bits` bits."""
    number = to_felt(value, name)
    if number >= 2**bits:
        raise EncodingError(f"{name}: {value!r} does not fit in u{bits}")
    return number


def felt_to_hex(value: int) -> str:
    """Format a field element the way artifacts store it."""
    return hex(value)


def felts_to_hex(values: Iterable[int]) -> List[str]:
    return [hex(v) for v in values]


def encode_short_string(text: str) -> int:
    """
    Encode an ASCII string of at most 31 characters as a field element.

    Used for protocol constants such as transaction prefixes and
    resource names.
    """
    if len(text) > MAX_SHORT_STRING_LENGTH:
        raise EncodingError(f"Short string too long: {text!r}")
    try:
        data = text.encode("ascii")
    except UnicodeEncodeError:
        raise EncodingError(f"Short string must be ASCII: {text!r}")
    return int.from_bytes(data, "big")


def decode_short_string(value: int) -> str:
    length = (value.bit_length() + 7) // 8
    return value.to_bytes(length, "big").decode("ascii")
