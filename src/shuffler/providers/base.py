"""Network client base interface.

One NetworkClient per network. The shuffler watches two networks at once:
a low-value test network and the production network.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

WEI_PER_ETHER = Decimal(10**18)


class Network(str, Enum):
    """Network identifier."""

    TESTNET = "testnet"
    MAINNET = "mainnet"


# Order in which networks are queried and reported
NETWORKS: tuple[Network, ...] = (Network.TESTNET, Network.MAINNET)


@dataclass(frozen=True)
class NetworkConfig:
    """Static configuration for a network."""

    network: Network
    name: str
    rpc_url: str
    chain_id: int
    explorer_url: str = ""

    def tx_url(self, tx_hash: str) -> str:
        if not self.explorer_url:
            return tx_hash
        return f"{self.explorer_url}/tx/{tx_hash}"


@dataclass
class FeeData:
    """Current fee quote. Only the legacy gas price is used."""

    gas_price: int


@dataclass
class TransactionReceipt:
    """Mined transaction receipt."""

    tx_hash: str
    status: int  # 1 = success, 0 = reverted
    block_number: int
    gas_used: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1


def format_ether(wei: int) -> Decimal:
    """Convert wei to ether."""
    return Decimal(wei) / WEI_PER_ETHER


class NetworkClient(ABC):
    """Abstract JSON-RPC capability for a single network.

    Implementations raise RpcTransientError for failed queries and
    JsonRpcError when the node answers with an error object.
    """

    def __init__(self, config: NetworkConfig):
        self.config = config

    @property
    def network(self) -> Network:
        return self.config.network

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def chain_id(self) -> int:
        return self.config.chain_id

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Native balance in wei."""
        pass

    @abstractmethod
    async def get_fee_data(self) -> FeeData:
        """Current gas price quote."""
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        """Account nonce."""
        pass

    @abstractmethod
    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        """Broadcast a signed transaction.

        Returns:
            0x-prefixed transaction hash
        """
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        """Receipt for a mined transaction, or None while pending."""
        pass

    async def aclose(self) -> None:
        """Release network resources."""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(network={self.network.value}, chain_id={self.chain_id})"
