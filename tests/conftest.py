"""Pytest configuration and fixtures."""

import asyncio
import heapq
import itertools
import os

import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DRY_RUN"] = "true"
os.environ["ENTROPY_STORE_PATH"] = ""

from shuffler.config import Settings
from shuffler.providers import Network, get_network_configs
from shuffler.providers.dryrun import SimulatedNetworkClient
from shuffler.services.session import SessionController
from shuffler.signing.local import LocalWalletSigner
from shuffler.storage import MemoryEntropyStore
from shuffler.utils.locks import clear_address_locks
from shuffler.utils.scheduler import Clock

# Well-known throwaway key (hardhat account #0)
WALLET_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

GWEI = 10**9
ETHER = 10**18


async def settle(rounds: int = 50) -> None:
    """Let ready tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualClock(Clock):
    """Clock that only moves when a test calls advance()."""

    def __init__(self, epoch_ms: int = 1_700_000_000_000):
        self._now = 0.0
        self._epoch_ms = epoch_ms
        self._sleepers: list = []
        self._seq = itertools.count()
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self._now

    def now_ms(self) -> int:
        return self._epoch_ms + int(self._now * 1000)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), future))
        await future

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        await settle()
        target = self._now + seconds
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not future.done():
                future.set_result(None)
            await settle()
        self._now = target
        await settle()


@pytest.fixture(autouse=True)
def reset_locks():
    """Clear forwarding locks between tests."""
    clear_address_locks()
    yield
    clear_address_locks()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        dry_run=True,
        entropy_store_path=None,
        poll_interval=5.0,
        forward_delay=30.0,
        confirmation_timeout=60.0,
        receipt_poll_interval=2.0,
    )


@pytest.fixture
def clients(settings) -> dict[Network, SimulatedNetworkClient]:
    configs = get_network_configs(settings)
    return {network: SimulatedNetworkClient(config) for network, config in configs.items()}


@pytest.fixture
def testnet(clients) -> SimulatedNetworkClient:
    return clients[Network.TESTNET]


@pytest.fixture
def mainnet(clients) -> SimulatedNetworkClient:
    return clients[Network.MAINNET]


@pytest.fixture
def signer() -> LocalWalletSigner:
    return LocalWalletSigner(WALLET_KEY)


@pytest.fixture
def store() -> MemoryEntropyStore:
    return MemoryEntropyStore()


@pytest.fixture
def rng():
    """Deterministic but distinct 16-byte values per call."""
    counter = itertools.count(1)
    return lambda: next(counter).to_bytes(16, "big")


@pytest_asyncio.fixture
async def controller(clients, signer, store, settings, clock, rng):
    """Session controller on simulated networks, closed after the test."""
    controller = SessionController(
        clients,
        signer,
        store,
        settings=settings,
        clock=clock,
        rng=rng,
    )
    yield controller
    await controller.close()
