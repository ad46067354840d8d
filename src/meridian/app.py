"""
Meridian - Identity & Ledger Gateway

Composition root and command-line entry point.

Gateway builds one service object per concern from a GatewayConfig and
tears them down again in close(). The `meridian` console script drives
the same objects from the shell.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from typing import Callable, Optional

from meridian.config import GatewayConfig
from meridian.errors import ErrorCode, GatewayError
from meridian.models.identity import QueryFilter
from meridian.models.store import EncryptedFileStore, JsonFileStore, KeyValueStore, STORAGE_KEYS
from meridian.networks import NETWORKS, format_price, get_network, get_network_by_name, parse_chain_id
from meridian.services.contracts import ContractClient
from meridian.services.datasets import DatasetService
from meridian.services.dwn import HttpVaultTransport, VaultTransport
from meridian.services.identity import IdentityVaultService
from meridian.services.logging import configure_logging, load_recent_logs
from meridian.services.permissions import PermissionManager
from meridian.utils import get_store_path
from meridian.wallet.gateway import WalletGateway
from meridian.wallet.provider import LocalKeyProvider, WalletProvider

logger = logging.getLogger(__name__)

USER_ROLES = ("provider", "buyer")


class Gateway:
    """One instance of every gateway service, sharing a store and config."""

    def __init__(self, config: GatewayConfig, store: KeyValueStore,
                 transport: Optional[VaultTransport] = None,
                 provider: Optional[WalletProvider] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.store = store
        self.transport = transport
        self.identity = IdentityVaultService(store, transport, config.dwn_endpoints, clock)
        self.permissions = PermissionManager(self.identity)
        self.datasets = DatasetService(self.identity, self.permissions)
        self.wallet = WalletGateway(store, provider, config)
        self.contracts = ContractClient(self.wallet, config)

    def set_user_role(self, role: str) -> None:
        if role not in USER_ROLES:
            raise GatewayError(ErrorCode.VALIDATION_ERROR, f"Role must be one of {USER_ROLES}")
        self.store.set(STORAGE_KEYS["USER_TYPE"], role)

    def get_user_role(self) -> Optional[str]:
        return self.store.get(STORAGE_KEYS["USER_TYPE"])

    async def close(self) -> None:
        await self.wallet.close()
        if self.transport is not None:
            await self.transport.close()


def build_gateway(config: Optional[GatewayConfig] = None,
                  store: Optional[KeyValueStore] = None,
                  password: Optional[str] = None,
                  private_key: Optional[str] = None) -> Gateway:
    """Build a Gateway wired to the network from config and local files."""
    config = config or GatewayConfig.load()
    if store is None:
        store = EncryptedFileStore(get_store_path(), password) if password else JsonFileStore(get_store_path())
    transport = HttpVaultTransport(config.dwn_endpoints, config.did_gateway, config.http_timeout)
    provider = None
    if private_key:
        try:
            provider = LocalKeyProvider(private_key, config.chain_id, config.custom_rpcs)
        except ValueError as e:
            raise GatewayError(ErrorCode.VALIDATION_ERROR, f"Invalid wallet configuration: {e}", e) from e
    return Gateway(config, store, transport, provider)


# ============================================
# Command line
# ============================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="meridian", description="Meridian identity & ledger gateway")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--password", default=os.environ.get("MERIDIAN_STORE_PASSWORD"),
                        help="Encrypt the local store with this password")
    parser.add_argument("--private-key", default=os.environ.get("MERIDIAN_PRIVATE_KEY"),
                        help="Chain key for the local wallet provider")
    parser.add_argument("--network", help="Target network by name (e.g. hardhat) or chain id")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("networks", help="List supported networks")

    logs = commands.add_parser("logs", help="Show recent log lines")
    logs.add_argument("-n", "--lines", type=int, default=50)

    identity = commands.add_parser("identity", help="Manage the decentralized identity")
    identity.add_argument("action", choices=["create", "connect", "status"])

    vault = commands.add_parser("vault", help="Read and write vault records")
    vault_actions = vault.add_subparsers(dest="action", required=True)
    write = vault_actions.add_parser("write")
    write.add_argument("payload", help="JSON payload")
    write.add_argument("--schema", required=True)
    write.add_argument("--published", action="store_true")
    read = vault_actions.add_parser("read")
    read.add_argument("record_id")
    query = vault_actions.add_parser("query")
    query.add_argument("--schema")
    delete = vault_actions.add_parser("delete")
    delete.add_argument("record_id")

    listing = commands.add_parser("listing", help="Show a marketplace listing")
    listing.add_argument("dataset_id")
    return parser


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _run(args: argparse.Namespace, gateway: Gateway) -> None:
    if args.command == "networks":
        _print([
            {"chainId": n.chain_id, "name": n.display_name, "rpc": n.rpc_url, "testnet": n.is_testnet}
            for n in NETWORKS.values()
        ])
        return

    if args.command == "identity":
        if args.action == "create":
            did = await gateway.identity.create_identity()
        elif args.action == "connect":
            did = await gateway.identity.connect_existing()
        else:
            did = gateway.store.get(STORAGE_KEYS["IDENTITY_DID"])
        _print({"did": did, "fallback": gateway.identity.is_fallback()})
        return

    if args.command == "vault":
        await gateway.identity.connect_existing()
        if args.action == "write":
            try:
                payload = json.loads(args.payload)
            except json.JSONDecodeError as e:
                raise GatewayError(ErrorCode.VALIDATION_ERROR, f"Payload is not valid JSON: {e}", e) from e
            _print({"recordId": await gateway.identity.write(payload, args.schema, args.published)})
        elif args.action == "read":
            _print(await gateway.identity.read(args.record_id))
        elif args.action == "query":
            records = await gateway.identity.query(QueryFilter(schema=args.schema))
            _print([r.to_wire() for r in records])
        else:
            await gateway.identity.delete(args.record_id)
            _print({"deleted": args.record_id})
        return

    if args.command == "listing":
        listing = await gateway.contracts.get_listing(args.dataset_id)
        _print({**listing.to_dict(), "priceFormatted": format_price(listing.price)})


async def _main_async(args: argparse.Namespace, config: GatewayConfig) -> None:
    gateway = build_gateway(config, password=args.password, private_key=args.private_key)
    try:
        await _run(args, gateway)
    finally:
        await gateway.close()


def resolve_network(value: str) -> int:
    """Chain id for a network name or chain id from the network table."""
    network = get_network_by_name(value)
    if network is not None:
        return network.chain_id
    try:
        chain_id = parse_chain_id(value)
    except ValueError as e:
        raise GatewayError(ErrorCode.VALIDATION_ERROR, f"Unknown network: {value}", e) from e
    if get_network(chain_id) is None:
        raise GatewayError(ErrorCode.VALIDATION_ERROR, f"Unknown network: {value}")
    return chain_id


def load_config(network: Optional[str] = None) -> GatewayConfig:
    try:
        config = GatewayConfig.load()
    except (TypeError, ValueError) as e:
        raise GatewayError(ErrorCode.VALIDATION_ERROR, f"Invalid settings: {e}", e) from e
    if network:
        config.chain_id = resolve_network(network)
    return config


def main(argv: Optional[list[str]] = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.network)

        # Configure logging before anything else
        configure_logging(logging.DEBUG if args.verbose else logging.WARNING, config.log_retention_days)

        if args.command == "logs":
            for line in load_recent_logs(args.lines):
                print(line)
            return 0

        asyncio.run(_main_async(args, config))
    except GatewayError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        logger.debug(f"Command failed: {e!r}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
