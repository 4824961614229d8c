"""Network clients for the test and production networks."""

from shuffler.providers.base import (
    NETWORKS,
    FeeData,
    Network,
    NetworkClient,
    NetworkConfig,
    TransactionReceipt,
    format_ether,
)
from shuffler.providers.factory import (
    close_network_clients,
    create_network_clients,
    get_network_configs,
)

__all__ = [
    "NETWORKS",
    "FeeData",
    "Network",
    "NetworkClient",
    "NetworkConfig",
    "TransactionReceipt",
    "close_network_clients",
    "create_network_clients",
    "format_ether",
    "get_network_configs",
]
