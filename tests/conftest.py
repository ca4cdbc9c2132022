"""
Pytest configuration and shared fixtures for the test suite.
"""

from typing import Any, Dict, List, Optional, Tuple

import pytest
from starknet_py.hash.utils import message_signature, private_to_stark_key

from airgap.config import AirgapConfig, NetworkType
from airgap.core.felt import encode_short_string
from airgap.core.transaction import Call, ResourceBound, ResourceBounds, UnsignedTransaction
from airgap.device.ledger import (
    CLA,
    INS_GET_PUBLIC_KEY,
    INS_GET_VERSION,
    INS_SIGN_HASH,
    P1_SIGN_HASH,
)
from airgap.device.transport import DeviceTransport
from airgap.node.interface import NodeInterface
from airgap.state.artifacts import MemoryArtifactStore
from airgap.tx.builder import ExecutionOptions, UnsignedTransactionBuilder
from airgap.tx.hasher import TransactionHasher
from airgap.tx.signature import RawSignature


SEPOLIA_CHAIN_ID = encode_short_string("SN_SEPOLIA")

SENDER_ADDRESS = "0x4a1b2c3d4e5f60718293a4b5c6d7e8f90123456789abcdef0123456789abcd"
TARGET_ADDRESS = "0x7c8d9e0f1a2b3c4d5e6f708192a3b4c5d6e7f8091a2b3c4d5e6f708192a3b4c"
SECOND_TARGET_ADDRESS = "0x2e3f405162738495a6b7c8d9e0f1021324354657687980a1b2c3d4e5f607182"

PRIVATE_KEY_A = 0x3C1E9550E66958296D11B60F8E8E7A7AD990D07FA65D5F7652C4A6C87D4E3CC
PRIVATE_KEY_B = 0x5D4B3F1A8E7C6D2B9A0F1E3C5B7D9F2A4C6E8B0D1F3A5C7E9B2D4F6A8C0E2B4


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config() -> AirgapConfig:
    """Create a test configuration."""
    return AirgapConfig(
        network=NetworkType.SEPOLIA,
        output_dir="txs",
        database_url="sqlite+aiosqlite:///:memory:",
        receipt_poll_interval_seconds=1,
        receipt_timeout_seconds=10,
        log_level="DEBUG",
    )


@pytest.fixture
def hasher() -> TransactionHasher:
    return TransactionHasher(SEPOLIA_CHAIN_ID)


# ============================================================================
# Test Data Generators
# ============================================================================

def make_resource_bounds(l2_amount: int = 0x2FAF080) -> ResourceBounds:
    """Create resource bounds with distinct values per class."""
    return ResourceBounds(
        l1_gas=ResourceBound(max_amount=0x186A0, max_price_per_unit=0x5AF3107A4000),
        l2_gas=ResourceBound(max_amount=l2_amount, max_price_per_unit=0x2540BE400),
        l1_data_gas=ResourceBound(max_amount=0x2710, max_price_per_unit=0x174876E800),
    )


def sign_with_key(tx_hash: int, private_key: int) -> RawSignature:
    """Sign a hash in software, as a device would."""
    r, s = message_signature(tx_hash, private_key)
    return RawSignature(
        public_key=private_to_stark_key(private_key),
        r=r,
        s=s,
        transaction_hash=tx_hash,
    )


class FixedClock:
    """Clock returning a fixed time, for deterministic timestamps."""

    def __init__(self, now: float = 1_760_000_000.5):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def sample_call() -> Call:
    """A single transfer-like call."""
    return Call(
        contract_address=TARGET_ADDRESS,
        entrypoint="transfer",
        calldata=("0x1", "0x2"),
    )


@pytest.fixture
def sample_calls(sample_call) -> List[Call]:
    """Two calls for multicall tests."""
    return [
        sample_call,
        Call(
            contract_address=SECOND_TARGET_ADDRESS,
            entrypoint="approve",
            calldata=("0xabc", "100", "0"),
        ),
    ]


@pytest.fixture
def execution_options() -> ExecutionOptions:
    return ExecutionOptions(
        sender_address=SENDER_ADDRESS,
        nonce="0x5",
        resource_bounds=make_resource_bounds(),
    )


@pytest.fixture
def memory_store() -> MemoryArtifactStore:
    return MemoryArtifactStore()


@pytest.fixture
def builder(memory_store, test_config) -> UnsignedTransactionBuilder:
    return UnsignedTransactionBuilder(memory_store, test_config, clock=FixedClock())


@pytest.fixture
def sample_unsigned(builder, sample_call, execution_options) -> UnsignedTransaction:
    """An unsigned single-call transaction with nonce 0x5."""
    return builder.build([sample_call], execution_options)


# ============================================================================
# Mock Node Interface
# ============================================================================

class MockNode(NodeInterface):
    """
    Mock node for testing.

    Status and receipt answers are scripted: each call pops the next entry
    and the last entry repeats.
    """

    def __init__(self, nonce: int = 5, tx_hash: Optional[str] = None):
        self.nonce = nonce
        self.tx_hash = tx_hash
        self.submitted: List[dict] = []
        self.statuses: List[Optional[dict]] = [{"finality_status": "ACCEPTED_ON_L2"}]
        self.receipts: List[Optional[dict]] = [
            {
                "execution_status": "SUCCEEDED",
                "finality_status": "ACCEPTED_ON_L2",
                "block_number": 812345,
                "block_hash": "0xb10c",
            }
        ]
        self.submit_error: Optional[Exception] = None
        self.submit_calls = 0
        self.status_calls = 0
        self.receipt_calls = 0
        self.nonce_calls = 0
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def get_chain_id(self) -> int:
        return SEPOLIA_CHAIN_ID

    async def get_nonce(self, address: str, block_id: str = "latest") -> int:
        self.nonce_calls += 1
        return self.nonce

    async def add_invoke_transaction(self, invoke_transaction: dict) -> str:
        self.submit_calls += 1
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(invoke_transaction)
        return self.tx_hash or "0x" + "ab" * 31

    async def get_transaction_status(self, tx_hash: str) -> Optional[dict]:
        self.status_calls += 1
        return self._next(self.statuses)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        self.receipt_calls += 1
        return self._next(self.receipts)

    @staticmethod
    def _next(script: List[Any]) -> Any:
        if len(script) > 1:
            return script.pop(0)
        return script[0]


@pytest.fixture
def mock_node() -> MockNode:
    return MockNode()


class FakeClock:
    """Monotonic clock advanced by FakeSleep."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeSleep:
    """Records sleeps and advances the fake clock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(fake_clock) -> FakeSleep:
    return FakeSleep(fake_clock)


# ============================================================================
# Fake Ledger Device
# ============================================================================

class FakeLedgerTransport(DeviceTransport):
    """
    Emulates the Starknet Ledger app, signing with a real Stark key.

    Attributes:
        status_word: Force this status word on every command
        reject_signing: Answer the hash frame with "user rejected"
        sign_offset: Sign hash + offset to simulate a wrong signature
        signature_format: "prefixed" (0x41 || r || s || v) or "raw" (r || s)
    """

    def __init__(self, private_key: int = PRIVATE_KEY_A, version: Tuple[int, int, int] = (2, 3, 1)):
        self.private_key = private_key
        self.public_key = private_to_stark_key(private_key)
        self.version = version
        self.status_word: Optional[int] = None
        self.reject_signing = False
        self.sign_offset = 0
        self.signature_format = "prefixed"
        self.apdus: List[bytes] = []
        self.signed_hashes: List[int] = []
        self.open_count = 0
        self.close_count = 0

    async def open(self) -> None:
        self.open_count += 1

    async def close(self) -> None:
        self.close_count += 1

    async def exchange(self, apdu: bytes) -> Tuple[bytes, int]:
        self.apdus.append(apdu)
        assert apdu[0] == CLA

        if self.status_word is not None:
            return b"", self.status_word

        ins, p1 = apdu[1], apdu[2]
        data = apdu[5:5 + apdu[4]]

        if ins == INS_GET_VERSION:
            return bytes(self.version), 0x9000

        if ins == INS_GET_PUBLIC_KEY:
            x = self.public_key.to_bytes(32, "big")
            return b"\x04" + x + b"\x11" * 32, 0x9000

        if ins == INS_SIGN_HASH:
            if p1 != P1_SIGN_HASH:
                return b"", 0x9000
            if self.reject_signing:
                return b"", 0x6985
            message_hash = int.from_bytes(data, "big") >> 4
            self.signed_hashes.append(message_hash)
            r, s = message_signature(message_hash + self.sign_offset, self.private_key)
            body = r.to_bytes(32, "big") + s.to_bytes(32, "big")
            if self.signature_format == "prefixed":
                return b"\x41" + body + b"\x00", 0x9000
            return body, 0x9000

        return b"", 0x6D00

    @property
    def sign_requests(self) -> List[bytes]:
        return [a for a in self.apdus if a[1] == INS_SIGN_HASH]


@pytest.fixture
def fake_transport() -> FakeLedgerTransport:
    return FakeLedgerTransport()


class ReviewRecorder:
    """Review prompt stand-in that records what it was shown."""

    def __init__(self, approve: bool = True):
        self.approve = approve
        self.summaries: List[str] = []

    def __call__(self, summary: str) -> bool:
        self.summaries.append(summary)
        return self.approve


@pytest.fixture
def approve_review() -> ReviewRecorder:
    return ReviewRecorder(approve=True)


def partial_artifacts(
    unsigned: UnsignedTransaction,
    hasher: TransactionHasher,
    keys: List[int],
) -> Dict[str, dict]:
    """Signed multisig partials for each key, named a.json, b.json, ..."""
    from airgap.tx.signature import SignatureAssembler

    tx_hash = hasher.hash(unsigned)
    assembler = SignatureAssembler()
    result = {}
    for index, key in enumerate(keys):
        name = f"{chr(ord('a') + index)}.json"
        result[name] = assembler.attach(unsigned, sign_with_key(tx_hash, key), multisig=True)
    return result
