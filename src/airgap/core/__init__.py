"""
Core transaction models.

Field element helpers, the invoke v3 transaction records that travel
between machines as artifacts, and the broadcast lifecycle.
"""

from airgap.core.status import BroadcastResult, BroadcastState
from airgap.core.transaction import (
    DISPLAY_ONLY_FIELDS,
    Call,
    DataAvailabilityMode,
    ResourceBound,
    ResourceBounds,
    SignedTransaction,
    UnsignedTransaction,
)

__all__ = [
    "DISPLAY_ONLY_FIELDS",
    "Call",
    "DataAvailabilityMode",
    "ResourceBound",
    "ResourceBounds",
    "SignedTransaction",
    "UnsignedTransaction",
    "BroadcastResult",
    "BroadcastState",
]
