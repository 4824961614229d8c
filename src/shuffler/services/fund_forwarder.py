"""Gas-aware forwarding from a one-off address to the escape hatch.

Forward flow:
1. Re-fetch the one-off balance (earlier observations may be stale)
2. Quote the gas price and add a per-network buffer
3. Reserve gas_price * gas_limit plus a safety margin
4. Sign a legacy transfer of balance - reserve and broadcast it
5. Wait a bounded time for the receipt; a timeout is not a failure
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from eth_account import Account
from web3 import Web3

from shuffler.config import Settings
from shuffler.errors import (
    BalanceUnavailable,
    InsufficientBalance,
    JsonRpcError,
    RpcTransientError,
    SubmissionError,
    TransactionTimeout,
)
from shuffler.hdwallet.base import OneOffAddress
from shuffler.hdwallet.eth import validate_address
from shuffler.providers.base import (
    NETWORKS,
    Network,
    NetworkClient,
    TransactionReceipt,
    format_ether,
)
from shuffler.utils.scheduler import AsyncioClock, Clock

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 25000
DEFAULT_GAS_BUFFER_PCT = {Network.TESTNET: 25, Network.MAINNET: 20}
DEFAULT_SAFETY_MARGIN_PCT = 10

# Provider messages meaning the funds were already moved
FUNDS_GONE_MARKERS = (
    "insufficient funds",
    "nonce too low",
    "already known",
    "known transaction",
    "replacement transaction underpriced",
)


class ForwardStatus(str, Enum):
    """Status of a forwarding transfer."""
    PENDING = "pending"         # Being prepared
    SUBMITTED = "submitted"     # Broadcast, receipt not seen in time
    COMPLETED = "completed"     # Receipt with status 1
    FAILED = "failed"


@dataclass(frozen=True)
class ForwardQuote:
    """Amount that can be forwarded after reserving gas. All values in wei."""

    network: Network
    balance: int
    gas_price: int
    adjusted_gas_price: int
    gas_limit: int
    gas_cost: int
    reserve: int
    amount: int

    @property
    def amount_ether(self) -> Decimal:
        return format_ether(self.amount)

    @property
    def reserve_ether(self) -> Decimal:
        return format_ether(self.reserve)


@dataclass
class ForwardResult:
    """Result of a forwarding attempt that reached the network."""

    network: Network
    tx_hash: str
    amount: int
    status: ForwardStatus
    quote: ForwardQuote
    receipt: Optional[TransactionReceipt] = None

    @property
    def confirmed(self) -> bool:
        return self.status == ForwardStatus.COMPLETED

    @property
    def amount_ether(self) -> Decimal:
        return format_ether(self.amount)


def compute_quote(
    network: Network,
    balance: int,
    gas_price: int,
    gas_limit: int = DEFAULT_GAS_LIMIT,
    gas_buffer_pct: int = 25,
    safety_margin_pct: int = DEFAULT_SAFETY_MARGIN_PCT,
) -> ForwardQuote:
    """Compute the forwardable amount with integer wei arithmetic.

    Raises:
        BalanceUnavailable: If the balance is zero
        InsufficientBalance: If the balance does not exceed the reserve
    """
    if balance <= 0:
        raise BalanceUnavailable("Balance no longer available", balance=balance)

    adjusted_gas_price = gas_price + gas_price * gas_buffer_pct // 100
    gas_cost = adjusted_gas_price * gas_limit
    reserve = gas_cost + gas_cost * safety_margin_pct // 100
    amount = balance - reserve

    if amount <= 0:
        raise InsufficientBalance(
            f"Balance ({format_ether(balance)} ETH) too low to cover gas "
            f"(estimated {format_ether(reserve)} ETH). Send more funds.",
            balance=balance,
            reserve=reserve,
        )

    return ForwardQuote(
        network=network,
        balance=balance,
        gas_price=gas_price,
        adjusted_gas_price=adjusted_gas_price,
        gas_limit=gas_limit,
        gas_cost=gas_cost,
        reserve=reserve,
        amount=amount,
    )


def select_network(balances: dict[Network, int]) -> tuple[Optional[Network], bool]:
    """Pick the network holding the larger balance.

    Returns:
        (network or None when nothing is funded, True when more than one is funded)
    """
    funded = [network for network in NETWORKS if balances.get(network, 0) > 0]
    if not funded:
        return None, False
    best = funded[0]
    for network in funded[1:]:
        if balances[network] > balances[best]:
            best = network
    return best, len(funded) > 1


def _funds_gone(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in FUNDS_GONE_MARKERS)


class FundForwarder:
    """Moves the safely forwardable balance of a one-off address.

    Example:
        forwarder = FundForwarder(clients)
        result = await forwarder.forward(one_off, escape_hatch.address, Network.TESTNET)
    """

    def __init__(
        self,
        clients: dict[Network, NetworkClient],
        gas_limit: int = DEFAULT_GAS_LIMIT,
        gas_buffer_pct: Optional[dict[Network, int]] = None,
        safety_margin_pct: int = DEFAULT_SAFETY_MARGIN_PCT,
        confirmation_timeout: float = 60.0,
        receipt_poll_interval: float = 2.0,
        clock: Optional[Clock] = None,
    ):
        self.clients = clients
        self.gas_limit = gas_limit
        self.gas_buffer_pct = dict(DEFAULT_GAS_BUFFER_PCT)
        if gas_buffer_pct:
            self.gas_buffer_pct.update(gas_buffer_pct)
        self.safety_margin_pct = safety_margin_pct
        self.confirmation_timeout = confirmation_timeout
        self.receipt_poll_interval = receipt_poll_interval
        self.clock = clock or AsyncioClock()

    @classmethod
    def from_settings(
        cls,
        clients: dict[Network, NetworkClient],
        settings: Settings,
        clock: Optional[Clock] = None,
    ) -> "FundForwarder":
        return cls(
            clients,
            gas_limit=settings.gas_limit,
            gas_buffer_pct={n: settings.get_gas_buffer_pct(n.value) for n in NETWORKS},
            safety_margin_pct=settings.gas_safety_margin_pct,
            confirmation_timeout=settings.confirmation_timeout,
            receipt_poll_interval=settings.receipt_poll_interval,
            clock=clock,
        )

    def _client(self, network: Network) -> NetworkClient:
        try:
            return self.clients[network]
        except KeyError:
            raise ValueError(f"No client configured for {network.value}")

    async def quote(self, address: str, network: Network) -> ForwardQuote:
        """Fetch fresh balance and gas price and compute the forwardable amount."""
        client = self._client(network)
        balance = await client.get_balance(address)
        fee_data = await client.get_fee_data()

        quote = compute_quote(
            network,
            balance,
            fee_data.gas_price,
            gas_limit=self.gas_limit,
            gas_buffer_pct=self.gas_buffer_pct.get(network, 25),
            safety_margin_pct=self.safety_margin_pct,
        )
        logger.debug(
            f"Quote on {network.value}: balance={format_ether(balance)} "
            f"reserve={quote.reserve_ether} amount={quote.amount_ether}"
        )
        return quote

    async def forward(
        self,
        one_off: OneOffAddress,
        destination: str,
        network: Network,
    ) -> ForwardResult:
        """Forward everything above the gas reserve to destination.

        Raises:
            InsufficientBalance: Balance does not cover the reserve
            BalanceUnavailable: Funds already spent (e.g. concurrent forward)
            SubmissionError: Provider rejected the transaction or it reverted
            RpcTransientError: Balance or fee lookup failed
        """
        destination = validate_address(destination)
        client = self._client(network)

        quote = await self.quote(one_off.address, network)
        nonce = await client.get_transaction_count(one_off.address, "pending")

        # Legacy transfer with explicit gas price: no EIP-1559 fee bidding
        tx = {
            "nonce": nonce,
            "gasPrice": quote.adjusted_gas_price,
            "gas": quote.gas_limit,
            "to": Web3.to_checksum_address(destination),
            "value": quote.amount,
            "data": b"",
            "chainId": client.chain_id,
        }

        signed_tx = Account.sign_transaction(tx, one_off.private_key)

        logger.info(
            f"Forwarding {quote.amount_ether} ETH on {client.name} "
            f"(reserve {quote.reserve_ether} ETH)"
        )

        try:
            tx_hash = await client.send_raw_transaction(signed_tx.raw_transaction)
        except JsonRpcError as e:
            if _funds_gone(e.message):
                raise BalanceUnavailable(
                    f"Balance no longer available: {e.message}", balance=quote.balance
                ) from e
            raise SubmissionError(f"Transaction rejected: {e.message}") from e
        except RpcTransientError as e:
            raise SubmissionError(f"Failed to broadcast transaction: {e.reason}") from e

        logger.info(f"Forwarding transaction sent: {tx_hash}")

        try:
            receipt = await self.wait_for_receipt(client, tx_hash)
        except TransactionTimeout as e:
            logger.warning(f"{e}; leaving it pending")
            return ForwardResult(
                network=network,
                tx_hash=tx_hash,
                amount=quote.amount,
                status=ForwardStatus.SUBMITTED,
                quote=quote,
            )

        if not receipt.succeeded:
            raise SubmissionError(f"Transaction {tx_hash} reverted")

        return ForwardResult(
            network=network,
            tx_hash=receipt.tx_hash or tx_hash,
            amount=quote.amount,
            status=ForwardStatus.COMPLETED,
            quote=quote,
            receipt=receipt,
        )

    async def wait_for_receipt(self, client: NetworkClient, tx_hash: str) -> TransactionReceipt:
        """Poll for a receipt until confirmation_timeout.

        Raises:
            TransactionTimeout: If no receipt appears in time
        """
        deadline = self.clock.time() + self.confirmation_timeout

        while True:
            try:
                receipt = await client.get_transaction_receipt(tx_hash)
                if receipt is not None:
                    return receipt
            except RpcTransientError as e:
                logger.debug(f"Receipt lookup failed for {tx_hash}: {e}")

            remaining = deadline - self.clock.time()
            if remaining <= 0:
                raise TransactionTimeout(tx_hash, self.confirmation_timeout)
            await self.clock.sleep(min(self.receipt_poll_interval, remaining))
