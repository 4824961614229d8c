"""Shuffle session state machine.

States:
    init -> generate_seed -> confirm_seed -> generate_one_off
         -> wait_funding -> forwarding -> complete -> (reset) init

Forwarding failures return to wait_funding, unless another forward from the
same one-off is still in flight; a forward that succeeds after a losing
attempt still completes the session. A new one-off may replace the
current one while waiting for funds. Every transition goes through reduce();
the controller only performs side effects (monitoring, disposal, logging)
around it.
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from shuffler.config import Settings, get_settings
from shuffler.entropy import generate_random_entropy
from shuffler.errors import (
    BalanceUnavailable,
    DerivationError,
    InsufficientBalance,
    InvalidInput,
    InvalidTransition,
    RecoveryNotFound,
    RpcTransientError,
    SigningRejected,
    SubmissionError,
)
from shuffler.hdwallet.base import EscapeHatchIdentity, KeyDisposedError, OneOffAddress
from shuffler.hdwallet.eth import (
    derive_escape_hatch,
    derive_one_off,
    one_off_message,
    validate_address,
)
from shuffler.providers.base import Network, NetworkClient, format_ether
from shuffler.services.balance_monitor import BalanceMonitor, WatchHandle
from shuffler.services.fund_forwarder import (
    ForwardResult,
    ForwardStatus,
    FundForwarder,
    select_network,
)
from shuffler.services.recovery import RecoveryDocument, RecoveryExporter
from shuffler.signing.base import WalletSigner
from shuffler.storage import EntropyStore
from shuffler.utils.locks import ForwardingLock, release_address_lock
from shuffler.utils.scheduler import AsyncioClock, Clock

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Session lifecycle state."""
    INIT = "init"
    GENERATE_SEED = "generate_seed"
    CONFIRM_SEED = "confirm_seed"
    GENERATE_ONE_OFF = "generate_one_off"
    WAIT_FUNDING = "wait_funding"
    FORWARDING = "forwarding"
    COMPLETE = "complete"


class Severity(str, Enum):
    """Log entry severity."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    """User-facing session log line."""

    severity: Severity
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class TransferStatus:
    """Outcome of the latest forwarding attempt."""

    status: ForwardStatus
    network: Optional[Network] = None
    amount: int = 0
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ShuffleSession:
    """Immutable session value. Replaced, never mutated."""

    state: SessionState = SessionState.INIT
    escape_hatch: Optional[EscapeHatchIdentity] = None
    one_off: Optional[OneOffAddress] = None
    transfer: Optional[TransferStatus] = None


# ======================
# Actions
# ======================

@dataclass(frozen=True)
class EscapeHatchCreated:
    identity: EscapeHatchIdentity


@dataclass(frozen=True)
class SeedShown:
    pass


@dataclass(frozen=True)
class SeedConfirmed:
    pass


@dataclass(frozen=True)
class OneOffCreated:
    one_off: OneOffAddress


@dataclass(frozen=True)
class ForwardingStarted:
    network: Optional[Network] = None


@dataclass(frozen=True)
class ForwardingSucceeded:
    result: ForwardResult


@dataclass(frozen=True)
class ForwardingFailed:
    error: str


@dataclass(frozen=True)
class SessionReset:
    pass


@dataclass(frozen=True)
class SessionDisposed:
    pass


Action = Union[
    EscapeHatchCreated,
    SeedShown,
    SeedConfirmed,
    OneOffCreated,
    ForwardingStarted,
    ForwardingSucceeded,
    ForwardingFailed,
    SessionReset,
    SessionDisposed,
]


def _require(session: ShuffleSession, action: Action, *states: SessionState) -> None:
    if session.state not in states:
        raise InvalidTransition(session.state.value, type(action).__name__)


def reduce(session: ShuffleSession, action: Action) -> ShuffleSession:
    """Return the session that results from applying action.

    Raises:
        InvalidTransition: If the action is not allowed in the current state
    """
    S = SessionState

    if isinstance(action, EscapeHatchCreated):
        _require(session, action, S.INIT)
        return ShuffleSession(state=S.GENERATE_SEED, escape_hatch=action.identity)

    if isinstance(action, SeedShown):
        _require(session, action, S.GENERATE_SEED)
        return replace(session, state=S.CONFIRM_SEED)

    if isinstance(action, SeedConfirmed):
        _require(session, action, S.CONFIRM_SEED)
        return replace(session, state=S.GENERATE_ONE_OFF)

    if isinstance(action, OneOffCreated):
        _require(session, action, S.GENERATE_ONE_OFF, S.WAIT_FUNDING)
        return replace(session, state=S.WAIT_FUNDING, one_off=action.one_off, transfer=None)

    if isinstance(action, ForwardingStarted):
        _require(session, action, S.WAIT_FUNDING, S.FORWARDING)
        if session.one_off is None:
            raise InvalidTransition(session.state.value, "ForwardingStarted without one-off")
        return replace(
            session,
            state=S.FORWARDING,
            transfer=TransferStatus(status=ForwardStatus.PENDING, network=action.network),
        )

    if isinstance(action, ForwardingSucceeded):
        _require(session, action, S.FORWARDING, S.WAIT_FUNDING)
        result = action.result
        return replace(
            session,
            state=S.COMPLETE,
            one_off=None,
            transfer=TransferStatus(
                status=result.status,
                network=result.network,
                amount=result.amount,
                tx_hash=result.tx_hash,
            ),
        )

    if isinstance(action, ForwardingFailed):
        _require(session, action, S.FORWARDING, S.WAIT_FUNDING)
        previous = session.transfer
        return replace(
            session,
            state=S.WAIT_FUNDING,
            transfer=TransferStatus(
                status=ForwardStatus.FAILED,
                network=previous.network if previous else None,
                error=action.error,
            ),
        )

    if isinstance(action, SessionReset):
        _require(session, action, S.COMPLETE)
        return ShuffleSession()

    if isinstance(action, SessionDisposed):
        return replace(session, one_off=None)

    raise TypeError(f"Unknown action: {action!r}")


class SessionController:
    """Drives one shuffle session.

    Usage:
        controller = SessionController(clients, signer, store)
        controller.generate_escape_hatch("my-secret")
        mnemonic = controller.show_seed()
        controller.confirm_seed()
        one_off = await controller.generate_one_off()
        # fund one_off.address; the monitor forwards automatically
        ...
        await controller.close()
    """

    def __init__(
        self,
        clients: dict[Network, NetworkClient],
        signer: WalletSigner,
        store: EntropyStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        monitor: Optional[BalanceMonitor] = None,
        forwarder: Optional[FundForwarder] = None,
        rng: Callable[[], bytes] = generate_random_entropy,
    ):
        self.settings = settings or get_settings()
        self.clock = clock or AsyncioClock()
        self.clients = clients
        self.signer = signer
        self.monitor = monitor or BalanceMonitor(
            clients, clock=self.clock, interval=self.settings.poll_interval
        )
        self.forwarder = forwarder or FundForwarder.from_settings(
            clients, self.settings, clock=self.clock
        )
        self.exporter = RecoveryExporter(store)
        self._rng = rng

        self.session = ShuffleSession()
        self.logs: list[LogEntry] = []
        self._watch: Optional[WatchHandle] = None
        self._last_seen: dict[Network, Optional[int]] = {}
        self._last_seen_address: Optional[str] = None
        self._observed: dict[Network, Decimal] = {}
        self._in_flight: dict[str, int] = {}
        self._forward_task: Optional[asyncio.Task] = None

    # ======================
    # State plumbing
    # ======================

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def monitoring(self) -> bool:
        return self._watch is not None and not self._watch.cancelled

    def _dispatch(self, action: Action) -> ShuffleSession:
        old = self.session
        new = reduce(old, action)
        if old.one_off is not None and old.one_off is not new.one_off:
            old.one_off.dispose()
            release_address_lock(old.one_off.address)
        self.session = new
        if new.state != SessionState.WAIT_FUNDING:
            self._stop_monitor()
        logger.debug(f"{type(action).__name__}: {old.state.value} -> {new.state.value}")
        return new

    def log(self, severity: Severity, message: str) -> LogEntry:
        entry = LogEntry(severity=severity, message=message)
        self.logs.append(entry)
        logger.log(_LOG_LEVELS[severity], message)
        return entry

    def _network_name(self, network: Network) -> str:
        client = self.clients.get(network)
        return client.name if client else network.value

    # ======================
    # Escape hatch
    # ======================

    def generate_escape_hatch(self, nonce: str) -> EscapeHatchIdentity:
        """Create the escape hatch from a nonce and fresh device randomness.

        The random half is saved to the entropy store under the nonce.
        """
        if self.state != SessionState.INIT:
            raise InvalidTransition(self.state.value, "EscapeHatchCreated")
        if not nonce:
            raise InvalidInput("Recovery nonce must not be empty")

        random_bytes = self._rng()
        identity = derive_escape_hatch(nonce, random_bytes)
        self.exporter.save(nonce, random_bytes)
        self._dispatch(EscapeHatchCreated(identity))

        self.log(
            Severity.WARNING,
            "IMPORTANT: Save your recovery key and seed phrase. You need both to recover funds!",
        )
        self.log(
            Severity.INFO,
            "Your recovery key has been saved on this device. Use the same device or export it.",
        )
        return identity

    def show_seed(self) -> str:
        """Return the mnemonic for the user to write down."""
        self._dispatch(SeedShown())
        return self.session.escape_hatch.mnemonic

    def confirm_seed(self) -> None:
        """User confirms the seed phrase has been saved."""
        self._dispatch(SeedConfirmed())

    def export_recovery(self, path: Optional[Union[str, Path]] = None) -> RecoveryDocument:
        """Export nonce + stored entropy, optionally writing it to a file."""
        escape_hatch = self.session.escape_hatch
        if escape_hatch is None:
            raise InvalidInput("No escape hatch in this session")

        try:
            document = self.exporter.build_document(escape_hatch.nonce)
            if path is not None:
                self.exporter.export_to_file(escape_hatch.nonce, path)
        except RecoveryNotFound as e:
            self.log(Severity.ERROR, str(e))
            raise

        self.log(Severity.SUCCESS, "Recovery information exported. Keep this file secure!")
        return document

    # ======================
    # One-off address
    # ======================

    async def generate_one_off(self) -> OneOffAddress:
        """Ask the wallet for a signature and derive a new one-off address.

        Replaces (and disposes) any current one-off address.
        """
        if self.state not in (SessionState.GENERATE_ONE_OFF, SessionState.WAIT_FUNDING):
            raise InvalidTransition(self.state.value, "OneOffCreated")

        user_address = validate_address(self.signer.address)
        message = one_off_message(user_address, self.clock.now_ms())

        try:
            signature = await self.signer.sign_message(message)
        except SigningRejected as e:
            self.log(Severity.ERROR, f"Signature request rejected: {e}")
            raise

        try:
            one_off = derive_one_off(signature)
        except DerivationError as e:
            self.log(Severity.ERROR, str(e))
            raise
        finally:
            del signature

        self._stop_monitor()
        self._last_seen = {}
        self._last_seen_address = None
        self._observed = {}
        self._dispatch(OneOffCreated(one_off))
        self.log(Severity.INFO, f"One-off address ready: {one_off.address}")

        await self._start_monitor()
        return one_off

    # ======================
    # Monitoring
    # ======================

    async def _start_monitor(self, resume: bool = False) -> None:
        one_off = self.session.one_off
        if one_off is None or self.state != SessionState.WAIT_FUNDING:
            return

        self._stop_monitor()
        handle = self.monitor.create_watch(one_off.address, self._on_balance_change)
        if resume and self._last_seen_address == one_off.address:
            # Only a new deposit should re-trigger forwarding
            handle.last_seen.update(self._last_seen)
        self._watch = handle

        names = " and ".join(self._network_name(n) for n in handle.clients)
        self.log(Severity.INFO, f"Monitoring for funds on {names}")
        await handle.start()

    def _stop_monitor(self) -> None:
        handle = self._watch
        if handle is None:
            return
        handle.cancel()
        self._last_seen = dict(handle.last_seen)
        self._last_seen_address = handle.address
        self._watch = None

    async def _on_balance_change(self, network: Network, balance: Decimal) -> None:
        name = self._network_name(network)
        previous = self._observed.get(network)
        self._observed[network] = balance
        if balance <= 0:
            logger.debug(f"Balance on {name} is now {balance}")
            return
        if previous is not None and balance <= previous:
            # Leftover dust after a forward is not a deposit
            logger.info(f"Balance on {name} dropped to {balance} ETH, not forwarding")
            return
        if self.state != SessionState.WAIT_FUNDING:
            return

        self.log(Severity.INFO, f"Detected {balance} ETH on {name}. Preparing to forward...")
        self._dispatch(ForwardingStarted(network))
        self._forward_task = asyncio.create_task(
            self._auto_forward(network), name="auto-forward"
        )

    # ======================
    # Forwarding
    # ======================

    async def _auto_forward(self, network: Network) -> Optional[ForwardResult]:
        one_off = self.session.one_off
        await self.clock.sleep(self.settings.forward_delay)

        if self.state != SessionState.FORWARDING or self.session.one_off is not one_off:
            logger.debug("Automatic forward skipped: session moved on")
            return None

        try:
            return await self._execute_forward(network, operation="auto")
        except Exception as e:
            self.log(Severity.ERROR, f"Error forwarding funds: {e}")
            await self._forward_failed(str(e))
            return None

    async def manual_forward(self) -> Optional[ForwardResult]:
        """Forward now from whichever network holds the larger balance.

        May run while an automatic forward is pending; whichever loses
        fails cleanly as 'balance no longer available'.
        """
        if self.state not in (SessionState.WAIT_FUNDING, SessionState.FORWARDING):
            raise InvalidTransition(self.state.value, "ForwardingStarted")
        one_off = self.session.one_off
        if one_off is None or self.session.escape_hatch is None:
            raise InvalidTransition(self.state.value, "ForwardingStarted")

        self.log(Severity.INFO, "Manually triggering forwarding...")
        self._dispatch(ForwardingStarted())

        try:
            balances = await self.monitor.get_balances(one_off.address)
        except RpcTransientError as e:
            self.log(Severity.ERROR, f"Manual forwarding failed: {e}")
            await self._forward_failed(str(e))
            return None

        self.log(
            Severity.INFO,
            ", ".join(
                f"{self._network_name(n)} balance: {format_ether(b)} ETH"
                for n, b in balances.items()
            ),
        )

        network, both_funded = select_network(balances)
        if network is None:
            self.log(Severity.ERROR, "No funds detected on either network. Please send funds first.")
            await self._forward_failed("no funds")
            return None

        name = self._network_name(network)
        if both_funded:
            self.log(
                Severity.WARNING,
                f"Detected balances on both networks. Using {name} which has the higher "
                f"balance. Funding one address on two networks links them on-chain.",
            )

        self.log(
            Severity.INFO,
            f"Found {format_ether(balances[network])} ETH on {name}. Preparing to forward...",
        )
        return await self._execute_forward(network, operation="manual")

    @contextmanager
    def _tracking(self, one_off: OneOffAddress) -> Iterator[None]:
        address = one_off.address
        self._in_flight[address] = self._in_flight.get(address, 0) + 1
        try:
            yield
        finally:
            self._in_flight[address] -= 1
            if not self._in_flight[address]:
                del self._in_flight[address]

    def _superseded(self, one_off: OneOffAddress) -> bool:
        """True when another forward owns the outcome for this one-off."""
        return self.session.one_off is not one_off or one_off.address in self._in_flight

    async def _execute_forward(
        self, network: Network, operation: str
    ) -> Optional[ForwardResult]:
        one_off = self.session.one_off
        escape_hatch = self.session.escape_hatch
        if one_off is None or escape_hatch is None:
            self.log(Severity.WARNING, "Balance no longer available: forwarding already finished")
            return None

        try:
            with self._tracking(one_off):
                async with ForwardingLock(
                    one_off.address,
                    enabled=self.settings.serialize_forwarding,
                    operation=operation,
                ):
                    if self.session.one_off is not one_off:
                        raise BalanceUnavailable("Balance no longer available")
                    result = await self.forwarder.forward(one_off, escape_hatch.address, network)

        except (
            BalanceUnavailable,
            KeyDisposedError,
            InsufficientBalance,
            SubmissionError,
            RpcTransientError,
        ) as e:
            if self._superseded(one_off) or isinstance(e, (BalanceUnavailable, KeyDisposedError)):
                self.log(
                    Severity.WARNING, f"Balance no longer available ({operation} forward): {e}"
                )
                await self._forward_failed("balance no longer available", one_off)
            elif isinstance(e, InsufficientBalance):
                self.log(Severity.ERROR, str(e))
                await self._forward_failed(str(e), one_off)
            else:
                self.log(Severity.ERROR, f"Error forwarding funds: {e}")
                await self._forward_failed(str(e), one_off)
            return None

        self._forward_succeeded(result, one_off)
        return result

    def _forward_succeeded(self, result: ForwardResult, one_off: OneOffAddress) -> None:
        if result.confirmed:
            self.log(Severity.SUCCESS, f"Transaction confirmed! Hash: {result.tx_hash}")
        else:
            self.log(
                Severity.WARNING,
                "Transaction submitted but confirmation taking longer than expected. "
                f"Hash: {result.tx_hash}",
            )

        # Completes even if a losing attempt already returned to wait_funding
        if self.session.one_off is not one_off or self.state not in (
            SessionState.FORWARDING,
            SessionState.WAIT_FUNDING,
        ):
            logger.warning(f"Forward {result.tx_hash} finished in state {self.state.value}")
            return

        self._dispatch(ForwardingSucceeded(result))
        self.log(Severity.SUCCESS, "Funds successfully forwarded to escape hatch!")

    async def _forward_failed(self, error: str, one_off: Optional[OneOffAddress] = None) -> None:
        one_off = one_off or self.session.one_off
        if one_off is None or self._superseded(one_off):
            logger.debug(f"Forward failure not applied: {error}")
            return
        if self.state not in (SessionState.FORWARDING, SessionState.WAIT_FUNDING):
            return
        self._dispatch(ForwardingFailed(error))
        await self._start_monitor(resume=True)

    async def wait_forwarding(self) -> Optional[ForwardResult]:
        """Wait for a pending automatic forward to finish."""
        task = self._forward_task
        if task is None:
            return None
        return await task

    # ======================
    # Balances
    # ======================

    async def check_balances(self) -> dict[str, dict[Network, Decimal]]:
        """Report one-off and escape hatch balances on both networks."""
        escape_hatch = self.session.escape_hatch
        if escape_hatch is None:
            raise InvalidInput("No escape hatch in this session")

        self.log(Severity.INFO, "Checking balances on both networks...")
        report: dict[str, dict[Network, Decimal]] = {}

        try:
            one_off = self.session.one_off
            if one_off is not None:
                raw = await self.monitor.get_balances(one_off.address)
                report["one_off"] = {n: format_ether(b) for n, b in raw.items()}
            raw = await self.monitor.get_balances(escape_hatch.address)
            report["escape_hatch"] = {n: format_ether(b) for n, b in raw.items()}
        except RpcTransientError as e:
            self.log(Severity.ERROR, f"Balance check failed: {e}")
            raise

        for label, title in (("one_off", "One-off address"), ("escape_hatch", "Escape hatch")):
            if label in report:
                self.log(
                    Severity.INFO,
                    f"{title} balances: "
                    + ", ".join(
                        f"{v} ETH ({self._network_name(n)})" for n, v in report[label].items()
                    ),
                )

        funded = [n for n, v in report.get("one_off", {}).items() if v > 0]
        if funded and self.state == SessionState.WAIT_FUNDING:
            self.log(
                Severity.WARNING,
                f"Funds detected in one-off address ({self._network_name(funded[0])}) but "
                "forwarding hasn't started. Consider using Manual Forward.",
            )

        return report

    # ======================
    # Lifecycle
    # ======================

    async def _cancel_forward_task(self) -> None:
        task = self._forward_task
        self._forward_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def reset(self) -> None:
        """Start over from a completed session. Clears the escape hatch too."""
        self._dispatch(SessionReset())
        await self._cancel_forward_task()
        self._last_seen = {}
        self._last_seen_address = None
        self.log(Severity.INFO, "Session reset")

    async def close(self) -> None:
        """Tear down: stop monitoring, cancel pending forwards, dispose the key."""
        self._stop_monitor()
        await self._cancel_forward_task()
        self._dispatch(SessionDisposed())
