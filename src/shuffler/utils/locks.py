"""Optional single-flight locking for forwarding.

Automatic and manual forwarding are allowed to race by default; the loser
fails cleanly at the provider. When serialize_forwarding is enabled, this
per-address lock makes the second attempt wait for the first.
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Global lock registry: address -> asyncio.Lock
_address_locks: dict[str, asyncio.Lock] = {}


def get_address_lock(address: str) -> asyncio.Lock:
    """Get or create a lock for an address (case-insensitive)."""
    key = address.lower()
    if key not in _address_locks:
        _address_locks[key] = asyncio.Lock()
    return _address_locks[key]


def release_address_lock(address: str) -> None:
    """Forget the lock for an address that will not forward again."""
    lock = _address_locks.get(address.lower())
    if lock is not None and not lock.locked():
        del _address_locks[address.lower()]


class ForwardingLock:
    """Context manager serializing forwards from one address.

    Disabled instances are no-ops so callers need no branching.

    Example:
        async with ForwardingLock(one_off.address, enabled=True, operation="manual"):
            await forwarder.forward(...)
    """

    def __init__(
        self,
        address: str,
        enabled: bool = True,
        timeout: Optional[float] = None,
        operation: str = "forward",
    ):
        self.address = address
        self.enabled = enabled
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "ForwardingLock":
        if not self.enabled:
            return self

        self._lock = get_address_lock(self.address)
        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
            self._acquired = True
            logger.debug(f"Lock acquired for {self.address}: {self.operation}")
            return self

        except asyncio.TimeoutError:
            logger.warning(
                f"Lock timeout for {self.address} after {self.timeout}s: {self.operation}"
            )
            raise LockTimeoutError(
                f"Could not acquire forwarding lock for {self.address} within {self.timeout}s"
            )

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Lock released for {self.address}: {self.operation}")
        return False


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


def clear_address_locks() -> None:
    """Clear all address locks (useful for testing)."""
    _address_locks.clear()
