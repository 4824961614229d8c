"""Clock and repeating task primitives.

Everything that waits goes through a Clock so tests can drive time by
hand instead of sleeping.
"""

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Clock(ABC):
    """Source of time and suspension."""

    @abstractmethod
    def time(self) -> float:
        """Monotonic seconds."""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task."""
        pass

    def now_ms(self) -> int:
        """Wall-clock epoch milliseconds."""
        return int(time.time() * 1000)


class AsyncioClock(Clock):
    """Real clock backed by the running event loop."""

    def time(self) -> float:
        return asyncio.get_running_loop().time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


async def maybe_await(result: Any) -> Any:
    """Await result if it is awaitable (sync or async callbacks)."""
    if inspect.isawaitable(result):
        return await result
    return result


class RepeatingTask:
    """Cancellable task that runs a coroutine function every interval.

    The first run happens after one interval; callers that want an
    immediate run do it themselves before start().

    Example:
        task = RepeatingTask(check, interval=5.0, clock=AsyncioClock())
        task.start()
        ...
        task.cancel()
    """

    def __init__(
        self,
        func: Callable[[], Awaitable[None]],
        interval: float,
        clock: Clock,
        name: str = "repeating-task",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.func = func
        self.interval = interval
        self.clock = clock
        self.name = name
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "RepeatingTask":
        if self._task is not None:
            raise RuntimeError(f"{self.name} already started")
        if not self._cancelled:
            self._task = asyncio.create_task(self._loop(), name=self.name)
        return self

    async def _loop(self) -> None:
        while not self._cancelled:
            await self.clock.sleep(self.interval)
            if self._cancelled:
                break
            self.runs += 1
            try:
                await self.func()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{self.name} run failed: {e}")

    def cancel(self) -> None:
        """Stop future runs. Idempotent; safe to call from inside func."""
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # From inside our own run the flag is enough; the loop exits after func returns
        if task is not current:
            task.cancel()

    async def wait(self) -> None:
        """Wait for the loop to finish after cancellation."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
