"""
Error taxonomy for the offline transaction pipeline.

Every failure raised by the library derives from AirgapError so the CLI
can turn it into a single readable line and a non-zero exit code.
"""

from typing import Any, Optional


class AirgapError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = False


# =============================================================================
# Local validation errors (never retried)
# =============================================================================

class ValidationError(AirgapError):
    """Raised when a transaction record or artifact is malformed."""
    pass


class ConfigurationError(ValidationError):
    """Raised when required execution parameters are missing."""
    pass


class EncodingError(ValidationError):
    """Raised when a value cannot be represented as a field element."""
    pass


class ArtifactNotFoundError(ValidationError):
    """Raised when an artifact does not exist in the store."""

    def __init__(self, name: str):
        super().__init__(f"Artifact not found: {name}")
        self.name = name


class ArtifactExistsError(ValidationError):
    """Raised instead of silently overwriting an existing artifact."""

    def __init__(self, name: str):
        super().__init__(
            f"Artifact already exists: {name} (choose another output or pass --force)"
        )
        self.name = name


class ConsistencyError(AirgapError):
    """Raised when partial signatures do not belong to the same transaction."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        files: Optional[tuple] = None,
    ):
        super().__init__(message)
        self.field = field
        self.files = files


# =============================================================================
# Hardware device errors
# =============================================================================

class DeviceError(AirgapError):
    """Raised when the signing device fails."""

    def __init__(self, message: str, return_code: Optional[int] = None):
        super().__init__(message)
        self.return_code = return_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.return_code is not None:
            return f"{message} (return code: 0x{self.return_code:04x})"
        return message


class UserRejectedError(DeviceError):
    """The user refused the operation on the device or at the review prompt."""
    pass


class AppNotReadyError(DeviceError):
    """The device is locked or the Starknet application is not open."""

    retryable = True


class MalformedResponseError(DeviceError):
    """The device answered with something that cannot be interpreted."""
    pass


# =============================================================================
# Network errors
# =============================================================================

class NetworkError(AirgapError):
    """Raised when the node refuses or cannot process a request."""
    pass


class RpcError(NetworkError):
    """An error object returned by the JSON-RPC endpoint."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data

    def __str__(self) -> str:
        message = super().__str__()
        parts = []
        if self.code is not None:
            parts.append(f"code {self.code}")
        if self.data:
            parts.append(f"data: {self.data}")
        if parts:
            return f"{message} ({', '.join(parts)})"
        return message


class NonceMismatchError(NetworkError):
    """The transaction nonce no longer matches the account nonce."""

    def __init__(self, message: str, expected: Optional[int] = None, actual: Optional[int] = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class TransportError(NetworkError):
    """Connection-level failure talking to the node. The caller may retry."""

    retryable = True


class BroadcastTimeoutError(AirgapError, TimeoutError):
    """Receipt polling exceeded its bound; the final status is unknown."""

    def __init__(self, transaction_hash: str, last_state: Any, timeout_seconds: float):
        super().__init__(
            f"Timed out after {timeout_seconds:g}s waiting for {transaction_hash}; "
            f"last known state: {getattr(last_state, 'value', last_state)}. "
            "The transaction may still be included later."
        )
        self.transaction_hash = transaction_hash
        self.last_state = last_state
        self.timeout_seconds = timeout_seconds
