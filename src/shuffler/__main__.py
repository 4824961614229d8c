"""Command line entry point.

Usage:
    python -m shuffler escape-hatch --nonce my-secret
    python -m shuffler recover --nonce my-secret [--entropy HEX | --file recovery.json]
    python -m shuffler export --nonce my-secret [--output recovery.json]
    python -m shuffler verify [--count 5]
    python -m shuffler balances 0x...
    python -m shuffler run --nonce my-secret [--fund 0.001]

Environment variables (see shuffler.config.Settings):
    DRY_RUN: use simulated networks (default: false)
    TESTNET_RPC_URL / MAINNET_RPC_URL: RPC endpoints
    WALLET_PRIVATE_KEY: local wallet used to sign (ephemeral if unset)
    ENTROPY_STORE_PATH: where recovery entropy is kept
"""

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal
from typing import Optional

from web3 import Web3

from shuffler.config import Settings, get_settings
from shuffler.entropy import generate_random_entropy
from shuffler.errors import ShufflerError
from shuffler.hdwallet.eth import (
    derive_escape_hatch,
    derive_indexed_addresses,
    verification_message,
)
from shuffler.providers import (
    Network,
    close_network_clients,
    create_network_clients,
    format_ether,
)
from shuffler.providers.dryrun import SimulatedNetworkClient
from shuffler.services.balance_monitor import BalanceMonitor
from shuffler.services.recovery import RecoveryExporter
from shuffler.services.session import SessionController, SessionState
from shuffler.signing.local import LocalWalletSigner
from shuffler.storage import get_entropy_store
from shuffler.utils.scheduler import AsyncioClock

logger = logging.getLogger("shuffler")


def _print(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_escape_hatch(args: argparse.Namespace, settings: Settings) -> int:
    """Create an escape hatch outside of a session (entropy is stored)."""
    exporter = RecoveryExporter(get_entropy_store(settings.entropy_store_path))
    random_bytes = generate_random_entropy()
    identity = derive_escape_hatch(args.nonce, random_bytes)
    exporter.save(args.nonce, random_bytes)

    _print({"address": identity.address, "mnemonic": identity.mnemonic})
    logger.warning("Save your recovery key and seed phrase. You need both to recover funds!")
    return 0


def cmd_recover(args: argparse.Namespace, settings: Settings) -> int:
    exporter = RecoveryExporter(get_entropy_store(settings.entropy_store_path))

    if args.file:
        document = exporter.load_document(args.file)
        identity = exporter.import_document(document)
    else:
        identity = exporter.recover(args.nonce, args.entropy)

    _print({"address": identity.address, "mnemonic": identity.mnemonic})
    return 0


def cmd_export(args: argparse.Namespace, settings: Settings) -> int:
    exporter = RecoveryExporter(get_entropy_store(settings.entropy_store_path))
    output = args.output or settings.recovery_export_filename
    path = exporter.export_to_file(args.nonce, output)
    print(f"Recovery information exported to {path}. Keep this file secure!")
    return 0


async def cmd_verify(args: argparse.Namespace, settings: Settings) -> int:
    signer = LocalWalletSigner(settings.wallet_private_key)
    message = verification_message(signer.address, AsyncioClock().now_ms())
    signature = await signer.sign_message(message)

    results = derive_indexed_addresses(signature, args.count)
    _print(
        {
            "wallet": signer.address,
            "message": message,
            "addresses": [{"index": r.index, "address": r.address} for r in results],
        }
    )
    return 0


async def cmd_balances(args: argparse.Namespace, settings: Settings) -> int:
    clients = create_network_clients(settings)
    try:
        balances = await BalanceMonitor(clients).get_balances(args.address)
    finally:
        await close_network_clients(clients)

    _print({clients[n].name: f"{format_ether(b)} ETH" for n, b in balances.items()})
    return 0


async def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Run a full session: escape hatch, one-off, monitor, forward."""
    clients = create_network_clients(settings)
    signer = LocalWalletSigner(settings.wallet_private_key)
    store = get_entropy_store(settings.entropy_store_path)
    controller = SessionController(clients, signer, store, settings=settings)

    try:
        identity = controller.generate_escape_hatch(args.nonce)
        mnemonic = controller.show_seed()
        _print({"escape_hatch": identity.address, "mnemonic": mnemonic})
        controller.confirm_seed()

        one_off = await controller.generate_one_off()
        print(f"Send funds to one-off address: {one_off.address}")

        if args.fund is not None:
            client = clients[Network.TESTNET]
            if not isinstance(client, SimulatedNetworkClient):
                logger.error("--fund only works with DRY_RUN=true")
                return 2
            client.fund(one_off.address, Web3.to_wei(Decimal(args.fund), "ether"))

        deadline = asyncio.get_running_loop().time() + args.timeout
        while controller.state != SessionState.COMPLETE:
            if asyncio.get_running_loop().time() > deadline:
                logger.error(f"Session not complete after {args.timeout}s")
                return 1
            await asyncio.sleep(1)

        transfer = controller.session.transfer
        _print(
            {
                "status": transfer.status.value,
                "tx_hash": transfer.tx_hash,
                "explorer": clients[transfer.network].config.tx_url(transfer.tx_hash),
                "amount": f"{format_ether(transfer.amount)} ETH",
                "escape_hatch": identity.address,
            }
        )
        return 0
    finally:
        await controller.close()
        await close_network_clients(clients)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shuffler",
        description="Relay funds from one-off addresses to an escape hatch",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("escape-hatch", help="Create an escape hatch")
    p.add_argument("--nonce", required=True, help="Recovery key")

    p = sub.add_parser("recover", help="Re-derive an escape hatch")
    p.add_argument("--nonce", help="Recovery key")
    p.add_argument("--entropy", help="Stored entropy hex (default: from store)")
    p.add_argument("--file", help="Exported recovery document")

    p = sub.add_parser("export", help="Export recovery information")
    p.add_argument("--nonce", required=True, help="Recovery key")
    p.add_argument("--output", help="Output file")

    p = sub.add_parser("verify", help="Show deterministic addresses for the wallet")
    p.add_argument("--count", type=int, default=5, help="Number of addresses (default: 5)")

    p = sub.add_parser("balances", help="Show balances on both networks")
    p.add_argument("address", help="Address to query")

    p = sub.add_parser("run", help="Run a full shuffle session")
    p.add_argument("--nonce", required=True, help="Recovery key")
    p.add_argument("--fund", help="Simulated deposit in ETH (dry run only)")
    p.add_argument(
        "--timeout", type=float, default=600.0, help="Seconds to wait for completion"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "recover" and not args.file and not args.nonce:
        logger.error("recover needs --nonce or --file")
        return 2

    try:
        if args.command == "escape-hatch":
            return cmd_escape_hatch(args, settings)
        if args.command == "recover":
            return cmd_recover(args, settings)
        if args.command == "export":
            return cmd_export(args, settings)
        if args.command == "verify":
            return asyncio.run(cmd_verify(args, settings))
        if args.command == "balances":
            return asyncio.run(cmd_balances(args, settings))
        if args.command == "run":
            return asyncio.run(cmd_run(args, settings))
    except ShufflerError as e:
        logger.error(str(e))
        return 1

    return 2


if __name__ == "__main__":
    sys.exit(main())
