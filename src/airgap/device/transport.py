"""
Request/response channels to the signing device.

A transport moves raw APDU frames and returns (response data, status
word). It knows nothing about the Starknet application on the device.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import httpx
import structlog

from airgap.config import AirgapConfig, DeviceTransportType, get_config
from airgap.errors import AppNotReadyError, DeviceError, MalformedResponseError

logger = structlog.get_logger(__name__)

STATUS_WORD_LENGTH = 2


def split_status_word(response: bytes) -> Tuple[bytes, int]:
    """Split a raw device response into payload and trailing status word."""
    if len(response) < STATUS_WORD_LENGTH:
        raise MalformedResponseError(
            f"Device response too short: {response.hex() or '<empty>'}"
        )
    return response[:-STATUS_WORD_LENGTH], int.from_bytes(response[-STATUS_WORD_LENGTH:], "big")


class DeviceTransport(ABC):
    """
    Abstract channel to a hardware signer.

    One device, one session: callers must not exchange concurrently.
    """

    @abstractmethod
    async def open(self) -> None:
        """
        Open the channel.

        Raises:
            AppNotReadyError: If no device is reachable
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def exchange(self, apdu: bytes) -> Tuple[bytes, int]:
        """
        Send one APDU and wait for the answer.

        Blocks until the user confirms or rejects when the command needs
        on-device approval.

        Returns:
            Tuple of (response data, status word)
        """
        pass

    async def __aenter__(self) -> "DeviceTransport":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class SpeculosTransport(DeviceTransport):
    """
    Talks to the Speculos emulator through its REST API.

    POST /apdu {"data": "<hex>"} answers {"data": "<hex payload + status word>"}.
    """

    def __init__(
        self,
        url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        # Approval prompts wait for a human, so no read timeout by default
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def open(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=self.timeout,
            transport=self._transport,
        )
        logger.info("speculos_connected", url=self.url)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("speculos_disconnected")

    async def exchange(self, apdu: bytes) -> Tuple[bytes, int]:
        if not self._client:
            await self.open()

        try:
            response = await self._client.post("/apdu", json={"data": apdu.hex()})
        except httpx.RequestError as e:
            raise AppNotReadyError(f"Speculos is not reachable at {self.url}: {e}")

        if response.status_code != 200:
            raise DeviceError(
                f"Speculos returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            raw = bytes.fromhex(response.json()["data"])
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedResponseError(f"Unexpected Speculos response: {e}")

        return split_status_word(raw)


class HidTransport(DeviceTransport):
    """
    USB HID channel through ledgerwallet.

    ledgerwallet is synchronous, so every call runs in a worker thread to
    keep the event loop responsive while the user confirms on the device.
    """

    def __init__(self):
        self._client = None
        self._comm_exception = None

    async def open(self) -> None:
        if self._client is not None:
            return

        try:
            from ledgerwallet.client import CommException, LedgerClient, NoLedgerDeviceException
        except ImportError:
            raise DeviceError(
                "USB transport requires ledgerwallet: pip install 'starknet-airgap[ledger]'"
            )

        try:
            self._client = await asyncio.to_thread(LedgerClient)
        except NoLedgerDeviceException as e:
            raise AppNotReadyError(f"No Ledger device found: {e}")

        self._comm_exception = CommException
        logger.info("hid_connected")

    async def close(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None
            logger.info("hid_disconnected")

    async def exchange(self, apdu: bytes) -> Tuple[bytes, int]:
        if self._client is None:
            await self.open()

        try:
            raw = await asyncio.to_thread(self._client.raw_exchange, apdu)
        except self._comm_exception as e:
            return bytes(e.data or b""), e.sw

        return split_status_word(bytes(raw))


def create_transport(config: Optional[AirgapConfig] = None) -> DeviceTransport:
    """Create the device transport selected by configuration."""
    config = config or get_config()
    if config.device_transport == DeviceTransportType.SPECULOS:
        return SpeculosTransport(config.speculos_url)
    return HidTransport()
