"""
Hardware signing device.

Transports to the device, the Starknet Ledger application client and the
SignerAdapter that signs transaction hashes with a device-held key.
"""

from airgap.device.adapter import SignerAdapter, render_summary
from airgap.device.ledger import (
    LedgerStarknetApp,
    normalize_public_key,
    normalize_signature,
    parse_derivation_path,
)
from airgap.device.transport import (
    DeviceTransport,
    HidTransport,
    SpeculosTransport,
    create_transport,
)

__all__ = [
    "SignerAdapter",
    "render_summary",
    "LedgerStarknetApp",
    "normalize_public_key",
    "normalize_signature",
    "parse_derivation_path",
    "DeviceTransport",
    "HidTransport",
    "SpeculosTransport",
    "create_transport",
]
