"""Dual-network balance monitor.

Polls an address on every configured network and reports each balance
change exactly once. Modeled on the deposit scanner loop: check, sleep,
repeat, never let one failing query stop the watch.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Callable, Optional

from shuffler.providers.base import NETWORKS, Network, NetworkClient, format_ether
from shuffler.utils.scheduler import AsyncioClock, Clock, RepeatingTask, maybe_await

logger = logging.getLogger(__name__)

BalanceCallback = Callable[[Network, Decimal], Any]


class WatchHandle:
    """A running watch on one address. cancel() is idempotent.

    After cancel() no further callback fires, including for the remaining
    network of a tick that is already in flight. A callback that was
    already dispatched is not retracted.
    """

    def __init__(
        self,
        address: str,
        on_change: BalanceCallback,
        clients: dict[Network, NetworkClient],
        interval: float,
        clock: Clock,
    ):
        self.address = address
        self.on_change = on_change
        self.clients = clients
        self.interval = interval
        self.clock = clock
        self.last_seen: dict[Network, Optional[int]] = {network: None for network in clients}
        self.ticks = 0
        self._cancelled = False
        self._task: Optional[RepeatingTask] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def start(self) -> "WatchHandle":
        """Run one immediate check, then poll every interval."""
        await self.check()
        if not self._cancelled:
            self._task = RepeatingTask(
                self.check,
                self.interval,
                self.clock,
                name=f"watch-{self.address[:10]}",
            ).start()
        return self

    async def check(self) -> None:
        """Query all networks concurrently and dispatch changes in network order."""
        if self._cancelled:
            return

        self.ticks += 1
        networks = [network for network in NETWORKS if network in self.clients]
        results = await asyncio.gather(
            *(self.clients[network].get_balance(self.address) for network in networks),
            return_exceptions=True,
        )

        for network, result in zip(networks, results):
            if self._cancelled:
                return

            if isinstance(result, Exception):
                logger.warning(
                    f"Balance check failed for {self.address} on {network.value}: {result}"
                )
                continue
            if isinstance(result, BaseException):
                raise result

            if result == self.last_seen[network]:
                continue

            previous = self.last_seen[network]
            self.last_seen[network] = result
            if previous is not None and result < previous:
                logger.info(f"Balance of {self.address} decreased on {network.value}")

            try:
                await maybe_await(self.on_change(network, format_ether(result)))
            except Exception as e:
                logger.error(f"Balance callback failed for {network.value}: {e}")

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None:
            self._task.cancel()
        logger.debug(f"Stopped watching {self.address}")

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task.wait()


class BalanceMonitor:
    """Watches addresses across the test and production networks.

    Example:
        monitor = BalanceMonitor(clients)
        handle = await monitor.watch(address, on_change, interval=5.0)
        ...
        handle.cancel()
    """

    def __init__(
        self,
        clients: dict[Network, NetworkClient],
        clock: Optional[Clock] = None,
        interval: float = 5.0,
    ):
        self.clients = clients
        self.clock = clock or AsyncioClock()
        self.interval = interval

    def create_watch(
        self,
        address: str,
        on_change: BalanceCallback,
        interval: Optional[float] = None,
    ) -> WatchHandle:
        """Build a handle without starting it (lets callbacks reach the handle)."""
        return WatchHandle(
            address=address,
            on_change=on_change,
            clients=self.clients,
            interval=interval or self.interval,
            clock=self.clock,
        )

    async def watch(
        self,
        address: str,
        on_change: BalanceCallback,
        interval: Optional[float] = None,
    ) -> WatchHandle:
        """Start watching an address.

        Args:
            address: Address to poll
            on_change: Called as on_change(network, balance_ether) on each change
            interval: Seconds between polls (default: monitor interval)

        Returns:
            WatchHandle whose cancel() stops the watch
        """
        handle = self.create_watch(address, on_change, interval)
        logger.info(
            f"Watching {address} on {', '.join(n.value for n in self.clients)} "
            f"(interval: {handle.interval}s)"
        )
        return await handle.start()

    async def get_balances(self, address: str) -> dict[Network, int]:
        """One-shot balance query on all networks. Failures propagate."""
        networks = [network for network in NETWORKS if network in self.clients]
        balances = await asyncio.gather(
            *(self.clients[network].get_balance(address) for network in networks)
        )
        return dict(zip(networks, balances))
