"""
Configuration management for the offline transaction pipeline.

Supports configuration via environment variables and .env files.
"""

from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from airgap.core.felt import encode_short_string, to_felt


class NetworkType(str, Enum):
    """Starknet networks."""
    MAINNET = "mainnet"
    SEPOLIA = "sepolia"
    DEVNET = "devnet"


class NodeProvider(str, Enum):
    """Supported transports for the node RPC."""
    HTTP = "http"
    WEBSOCKET = "websocket"


class ArtifactBackend(str, Enum):
    """Where unsigned/signed transaction artifacts are kept."""
    FILE = "file"
    DATABASE = "database"


class DeviceTransportType(str, Enum):
    """How to reach the hardware signer."""
    HID = "hid"
    SPECULOS = "speculos"


CHAIN_IDS = {
    NetworkType.MAINNET: encode_short_string("SN_MAIN"),
    NetworkType.SEPOLIA: encode_short_string("SN_SEPOLIA"),
}

DEFAULT_RPC_URLS = {
    NetworkType.MAINNET: "https://starknet-mainnet.public.blastapi.io/rpc/v0_8",
    NetworkType.SEPOLIA: "https://starknet-sepolia.public.blastapi.io/rpc/v0_8",
    NetworkType.DEVNET: "http://127.0.0.1:5050/rpc",
}

# EIP-2645 path used by the Starknet Ledger app guides.
DEFAULT_DERIVATION_PATH = "m/2645'/1195502025'/1470455285'/0'/0'/0"


class AirgapConfig(BaseSettings):
    """
    Configuration settings for the pipeline.

    All settings can be configured via environment variables with the AIRGAP_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="AIRGAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Network settings
    network: NetworkType = Field(
        default=NetworkType.MAINNET,
        description="Starknet network the transactions target"
    )
    chain_id: Optional[str] = Field(
        default=None,
        description="Explicit chain id (hex or short string such as SN_SEPOLIA)"
    )

    # Node settings
    node_provider: NodeProvider = Field(
        default=NodeProvider.HTTP,
        description="Transport used for JSON-RPC calls"
    )
    rpc_url: Optional[str] = Field(
        default=None,
        description="Custom JSON-RPC endpoint (http(s):// or ws(s)://)"
    )
    rpc_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single RPC request"
    )

    # Artifact settings
    output_dir: str = Field(
        default="starknet-offline-txs",
        description="Directory for generated transaction files"
    )
    artifact_backend: ArtifactBackend = Field(
        default=ArtifactBackend.FILE,
        description="Storage backend for transaction artifacts"
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///airgap.db",
        description="SQLAlchemy database URL for the database backend"
    )

    # Signing device settings
    device_transport: DeviceTransportType = Field(
        default=DeviceTransportType.HID,
        description="Channel used to reach the signing device"
    )
    speculos_url: str = Field(
        default="http://127.0.0.1:5000",
        description="Speculos emulator REST endpoint"
    )
    derivation_path: str = Field(
        default=DEFAULT_DERIVATION_PATH,
        description="Default key derivation path on the device"
    )

    # Receipt polling settings
    receipt_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Delay between transaction status checks"
    )
    receipt_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Maximum time to wait for a final transaction status"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )

    @property
    def resolved_rpc_url(self) -> str:
        """Get the RPC URL, falling back to the network default."""
        if self.rpc_url:
            return self.rpc_url
        return DEFAULT_RPC_URLS[self.network]

    def resolve_chain_id(self) -> Optional[int]:
        """
        Get the chain id as a field element.

        Returns None when it must be read from the node (devnet without
        an explicit chain id).
        """
        if self.chain_id:
            return parse_chain_id(self.chain_id)
        return CHAIN_IDS.get(self.network)


def parse_chain_id(value: str) -> int:
    """Accept a hex/decimal chain id or its short-string name."""
    text = value.strip()
    if text.lower().startswith("0x") or text.isdigit():
        return to_felt(text, "chain_id")
    return encode_short_string(text)


# Global config instance
_config: Optional[AirgapConfig] = None


def get_config() -> AirgapConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = AirgapConfig()
    return _config


def set_config(config: AirgapConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
