"""Network client factory."""

import logging
from typing import Optional

from shuffler.config import Settings, get_settings
from shuffler.providers.base import Network, NetworkClient, NetworkConfig
from shuffler.providers.dryrun import SimulatedNetworkClient
from shuffler.providers.rpc import JsonRpcNetworkClient

logger = logging.getLogger(__name__)


def get_network_configs(settings: Optional[Settings] = None) -> dict[Network, NetworkConfig]:
    """Build the static network table from settings."""
    settings = settings or get_settings()
    return {
        Network.TESTNET: NetworkConfig(
            network=Network.TESTNET,
            name=settings.testnet_name,
            rpc_url=settings.testnet_rpc_url,
            chain_id=settings.testnet_chain_id,
            explorer_url=settings.testnet_explorer_url,
        ),
        Network.MAINNET: NetworkConfig(
            network=Network.MAINNET,
            name=settings.mainnet_name,
            rpc_url=settings.mainnet_rpc_url,
            chain_id=settings.mainnet_chain_id,
            explorer_url=settings.mainnet_explorer_url,
        ),
    }


def create_network_clients(settings: Optional[Settings] = None) -> dict[Network, NetworkClient]:
    """Create one client per network.

    Client type is selected by the DRY_RUN setting:
    - false (default): JSON-RPC over httpx
    - true: simulated in-memory networks

    Returns:
        Mapping of Network -> NetworkClient
    """
    settings = settings or get_settings()
    configs = get_network_configs(settings)

    if settings.dry_run:
        logger.info("Dry-run mode: using simulated networks")
        return {network: SimulatedNetworkClient(config) for network, config in configs.items()}

    return {
        network: JsonRpcNetworkClient(config, timeout=settings.rpc_timeout)
        for network, config in configs.items()
    }


async def close_network_clients(clients: dict[Network, NetworkClient]) -> None:
    """Close every client in the mapping."""
    for client in clients.values():
        await client.aclose()
