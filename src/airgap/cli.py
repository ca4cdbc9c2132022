"""
Command-line interface for Starknet Airgap.

Each step of the offline flow is its own command so it can run on a
different machine: build -> sign (per signer) -> combine -> broadcast.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pydantic
import structlog

from airgap import __version__
from airgap.config import (
    AirgapConfig,
    ArtifactBackend,
    NetworkType,
    set_config,
)
from airgap.core.status import BroadcastResult, BroadcastState
from airgap.core.transaction import Call, UnsignedTransaction
from airgap.device import LedgerStarknetApp, SignerAdapter, create_transport
from airgap.errors import AirgapError, ConfigurationError, ValidationError
from airgap.node import create_node
from airgap.state import FileArtifactStore, init_artifact_database
from airgap.state.artifacts import ArtifactStore
from airgap.tx.broadcaster import Broadcaster, ReceiptPoller
from airgap.tx.builder import (
    RESOURCE_BOUND_OPTIONS,
    ExecutionOptions,
    UnsignedTransactionBuilder,
    load_calls,
    resolve_resource_bounds,
)
from airgap.tx.hasher import TransactionHasher
from airgap.tx.signature import SignatureAssembler

logger = structlog.get_logger(__name__)

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Logs go to stderr so stdout only carries command output
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        stream=sys.stderr,
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="airgap",
        description="Offline construction, hardware signing and broadcast of Starknet transactions",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--network",
        choices=[n.value for n in NetworkType],
        help="Starknet network (default: mainnet, or AIRGAP_NETWORK)",
    )
    parser.add_argument(
        "--rpc-url",
        help="JSON-RPC endpoint (http(s):// or ws(s)://)",
    )
    parser.add_argument(
        "--chain-id",
        help="Chain id override, hex or short string (e.g. SN_SEPOLIA)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        default=None,
        help="Output logs in JSON format",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Build command
    build_parser = subparsers.add_parser("build", help="Build an unsigned invoke transaction")
    build_parser.add_argument(
        "--calls",
        help='JSON file with {"calls": [{"contract_address", "entrypoint", "calldata"}]}',
    )
    build_parser.add_argument("--contract-address", help="Target contract of a single call")
    build_parser.add_argument("--entrypoint", help="Entrypoint name (or selector) of a single call")
    build_parser.add_argument(
        "--calldata",
        nargs="*",
        default=[],
        help="Calldata of a single call",
    )
    build_parser.add_argument("--sender", help="Account address sending the transaction")
    build_parser.add_argument("--nonce", help="Account nonce (see the nonce command)")
    for _, amount_key, price_key in RESOURCE_BOUND_OPTIONS:
        for key in (amount_key, price_key):
            build_parser.add_argument(
                "--" + key.replace("_", "-"),
                dest=key,
                help=f"Resource bound {key.replace('_', ' ')}",
            )
    build_parser.add_argument("--tip", default="0", help="Priority tip (default: 0)")
    build_parser.add_argument(
        "--paymaster-data",
        nargs="*",
        default=[],
        help="Paymaster data (default: empty)",
    )
    build_parser.add_argument(
        "--account-deployment-data",
        nargs="*",
        default=[],
        help="Account deployment data (default: empty)",
    )
    build_parser.add_argument(
        "--operation",
        default="invoke",
        help="Operation name used in the generated file name (default: invoke)",
    )
    build_parser.add_argument("--output", help="Output artifact path")
    build_parser.add_argument("--force", action="store_true", help="Overwrite an existing output")

    # Sign command
    sign_parser = subparsers.add_parser("sign", help="Sign an unsigned transaction on a Ledger")
    sign_parser.add_argument("file", help="Unsigned transaction file")
    sign_parser.add_argument("--device-path", help="Derivation path on the device")
    sign_parser.add_argument(
        "--multisig",
        action="store_true",
        help="Produce a [pubkey, r, s] group for a multisig account",
    )
    sign_parser.add_argument("--output", help="Output artifact path (default: <file>_signed.json)")
    sign_parser.add_argument("--force", action="store_true", help="Overwrite an existing output")

    # Combine command
    combine_parser = subparsers.add_parser("combine", help="Combine partial multisig signatures")
    combine_parser.add_argument("files", nargs="+", help="Signed transaction files, in signer order")
    combine_parser.add_argument("--output", help="Output artifact path")
    combine_parser.add_argument(
        "--order-by-signer-guid",
        action="store_true",
        help="Sort signers by GUID (Argent multisig convention) instead of input order",
    )
    combine_parser.add_argument("--force", action="store_true", help="Overwrite an existing output")

    # Broadcast command
    broadcast_parser = subparsers.add_parser("broadcast", help="Submit a signed transaction")
    broadcast_parser.add_argument("file", help="Signed or combined transaction file")
    broadcast_parser.add_argument("--timeout", type=float, help="Receipt polling timeout in seconds")
    broadcast_parser.add_argument("--poll-interval", type=float, help="Seconds between status checks")
    broadcast_parser.add_argument(
        "--skip-nonce-check",
        action="store_true",
        help="Do not compare the transaction nonce with the account nonce first",
    )

    # Hash command
    hash_parser = subparsers.add_parser("hash", help="Print the transaction hash of a file")
    hash_parser.add_argument("file", help="Unsigned or signed transaction file")

    # Pubkey command
    pubkey_parser = subparsers.add_parser("pubkey", help="Show the device public key")
    pubkey_parser.add_argument("--device-path", help="Derivation path on the device")

    # Status command
    status_parser = subparsers.add_parser("status", help="Poll the status of a submitted transaction")
    status_parser.add_argument("tx_hash", help="Transaction hash")
    status_parser.add_argument("--timeout", type=float, help="Polling timeout in seconds")

    # Nonce command
    nonce_parser = subparsers.add_parser("nonce", help="Print the current nonce of an account")
    nonce_parser.add_argument("address", help="Account address")

    return parser


def build_config(args: argparse.Namespace) -> AirgapConfig:
    """Merge command line flags over environment configuration."""
    overrides = {
        "network": args.network,
        "rpc_url": args.rpc_url,
        "chain_id": args.chain_id,
        "log_level": args.log_level,
        "log_json": args.log_json,
    }
    try:
        return AirgapConfig(**{k: v for k, v in overrides.items() if v is not None})
    except pydantic.ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}")


async def open_store(config: AirgapConfig) -> ArtifactStore:
    if config.artifact_backend == ArtifactBackend.DATABASE:
        return await init_artifact_database(config)
    return FileArtifactStore(".")


async def resolve_chain_id(config: AirgapConfig, node=None) -> int:
    """Chain id from configuration, or from the node for devnets."""
    chain_id = config.resolve_chain_id()
    if chain_id is not None:
        return chain_id

    if node is None:
        async with create_node(config) as devnet:
            return await devnet.get_chain_id()
    return await node.get_chain_id()


def prompt_review(summary: str) -> bool:
    """Show what is about to be signed and wait for an explicit yes."""
    print(summary)
    print()
    print("The device will show the transaction hash. Check it matches the one above.")
    try:
        answer = input("Sign this transaction? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def read_calls_file(path: str) -> List[Call]:
    file_path = Path(path)
    if not file_path.is_file():
        raise ValidationError(f"Calls file not found: {path}")
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"{path} is not valid JSON: {e}")
    return load_calls(data)


def print_result(result: BroadcastResult) -> None:
    print(f"  Transaction hash: {result.transaction_hash}")
    print(f"  Status: {result.state.value}")
    if result.block_number is not None:
        print(f"  Block number: {result.block_number}")
    if result.block_hash:
        print(f"  Block hash: {result.block_hash}")
    if result.revert_reason:
        print(f"  Revert reason: {result.revert_reason}")


def result_exit_code(result: BroadcastResult) -> int:
    if result.state in (BroadcastState.REVERTED, BroadcastState.REJECTED):
        return EXIT_FAILURE
    return 0


# =============================================================================
# Commands
# =============================================================================

async def build_command(args: argparse.Namespace, config: AirgapConfig) -> int:
    """Build an unsigned transaction artifact."""
    if args.calls:
        calls = read_calls_file(args.calls)
    elif args.contract_address and args.entrypoint:
        calls = [Call(args.contract_address, args.entrypoint, tuple(args.calldata))]
    else:
        raise ConfigurationError(
            "Provide --calls FILE or both --contract-address and --entrypoint"
        )

    options = ExecutionOptions(
        sender_address=args.sender,
        nonce=args.nonce,
        resource_bounds=resolve_resource_bounds(
            **{
                key: getattr(args, key)
                for _, amount_key, price_key in RESOURCE_BOUND_OPTIONS
                for key in (amount_key, price_key)
            }
        ),
        tip=args.tip,
        paymaster_data=args.paymaster_data,
        account_deployment_data=args.account_deployment_data,
    )

    store = await open_store(config)
    try:
        builder = UnsignedTransactionBuilder(store, config)
        tx, name = await builder.build_and_save(
            calls,
            options,
            operation=args.operation,
            output=args.output,
            overwrite=args.force,
        )
    finally:
        await store.close()

    print(f"Unsigned transaction saved to: {name}")
    print(f"  Sender: {hex(tx.sender_address)}")
    print(f"  Nonce: {tx.nonce}")
    print(f"  Calls: {len(calls)}")
    print()
    print("Next: copy the file to each signer and run `airgap sign`")
    return 0


async def sign_command(args: argparse.Namespace, config: AirgapConfig) -> int:
    """Sign an unsigned transaction on the hardware device."""
    chain_id = await resolve_chain_id(config)

    adapter = SignerAdapter(
        LedgerStarknetApp(create_transport(config)),
        hasher=TransactionHasher(chain_id),
        review=prompt_review,
        derivation_path=args.device_path or config.derivation_path,
    )

    store = await open_store(config)
    try:
        signed, target, raw = await adapter.sign_artifact(
            store,
            args.file,
            multisig=args.multisig,
            output=args.output,
            overwrite=args.force,
        )
    finally:
        await store.close()

    print(f"Connected to Starknet app v{adapter.app_version}")
    print(f"Public key: {hex(raw.public_key)}")
    print(f"Transaction hash: {hex(raw.transaction_hash)}")
    print(f"Signed transaction saved to: {target}")
    print()
    if args.multisig:
        print("Next: collect the other signers' files and run `airgap combine`")
    else:
        print("Next: run `airgap broadcast` on an online machine")
    return 0


async def combine_command(args: argparse.Namespace, config: AirgapConfig) -> int:
    """Combine partial multisig signatures into one transaction."""
    store = await open_store(config)
    try:
        assembler = SignatureAssembler(store, config)
        combined, target = await assembler.combine_artifacts(
            args.files,
            output=args.output,
            order_by_signer_guid=args.order_by_signer_guid,
            overwrite=args.force,
        )
    finally:
        await store.close()

    print(f"Combined {len(args.files)} signatures ({len(combined['signature'])} elements)")
    print(f"Multisig transaction saved to: {target}")
    return 0


async def broadcast_command(args: argparse.Namespace, config: AirgapConfig) -> int:
    """Submit a signed transaction and wait for its receipt."""
    store = await open_store(config)
    try:
        data = await store.load(args.file)
    finally:
        await store.close()

    async with create_node(config) as node:
        chain_id = await resolve_chain_id(config, node)
        broadcaster = Broadcaster(node, TransactionHasher(chain_id), config)

        print(f"Broadcasting to {config.network.value} ({config.resolved_rpc_url})")
        result = await broadcaster.broadcast(
            data,
            verify_nonce=not args.skip_nonce_check,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
        )

    print_result(result)
    return result_exit_code(result)


async def hash_command(args: argparse.Namespace, config: AirgapConfig) -> int:
    """Print the transaction hash so signers can compare it with the device."""
    store = await open_store(config)
    try:
        data = await store.load(args.file)
    finally:
        await store.close()

    tx = UnsignedTransaction.from_dict(data)
    chain_id = await resolve_chain_id(config)
    print(TransactionHasher(chain_id).hash_hex(tx))
    return 0


async def pubkey_command(args: argparse.Namespace, config: AirgapConfig) -> int:
    """Show the Stark public key at a derivation path."""
    path = args.device_path or config.derivation_path
    adapter = SignerAdapter(LedgerStarknetApp(create_transport(config)), derivation_path=path)
    print("Confirm the public key on the device...")
    public_key = await adapter.get_public_key(display=True)

    print(f"Starknet app v{adapter.app_version}")
    print(f"Derivation path: {path}")
    print(f"Public key: {hex(public_key)}")
    return 0


async def status_command(args: argparse.Namespace, config: AirgapConfig) -> int:
    """Poll an earlier submission until it reaches a final state."""
    timeout = config.receipt_timeout_seconds if args.timeout is None else args.timeout

    async with create_node(config) as node:
        poller = ReceiptPoller(node, interval=config.receipt_poll_interval_seconds, timeout=timeout)
        result = await poller.wait(BroadcastResult(transaction_hash=args.tx_hash))

    print_result(result)
    return result_exit_code(result)


async def nonce_command(args: argparse.Namespace, config: AirgapConfig) -> int:
    """Print the current nonce of an account."""
    async with create_node(config) as node:
        nonce = await node.get_nonce(args.address)
    print(f"{hex(nonce)} ({nonce})")
    return 0


COMMANDS = {
    "build": build_command,
    "sign": sign_command,
    "combine": combine_command,
    "broadcast": broadcast_command,
    "hash": hash_command,
    "pubkey": pubkey_command,
    "status": status_command,
    "nonce": nonce_command,
}


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(2)

    try:
        config = build_config(args)
        set_config(config)
        setup_logging(config.log_level, config.log_json)

        exit_code = asyncio.run(COMMANDS[args.command](args, config))

    except AirgapError as e:
        logger.debug("command_failed", command=args.command, error_type=type(e).__name__)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)
    except KeyboardInterrupt:
        print("\nInterrupted. A submitted transaction may still be included later.", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
