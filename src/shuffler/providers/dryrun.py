"""Simulated in-memory network for dry runs and tests (no real RPC)."""

import logging
from typing import Optional

import rlp
from eth_account import Account
from eth_utils import keccak, to_checksum_address

from shuffler.errors import JsonRpcError, RpcTransientError
from shuffler.providers.base import FeeData, NetworkClient, NetworkConfig, TransactionReceipt

logger = logging.getLogger(__name__)

TRANSFER_GAS_USED = 21000


class SimulatedNetworkClient(NetworkClient):
    """Simulated EVM network holding balances and nonces in memory.

    Accepts legacy signed transfers, checks nonce and funds the way a node
    would, and mines them immediately unless auto_mine is off.
    """

    def __init__(
        self,
        config: NetworkConfig,
        gas_price: int = 1_000_000_000,
        auto_mine: bool = True,
    ):
        super().__init__(config)
        self.gas_price = gas_price
        self.auto_mine = auto_mine
        self.balances: dict[str, int] = {}
        self.nonces: dict[str, int] = {}
        self.receipts: dict[str, TransactionReceipt] = {}
        self.sent: list[dict] = []
        self.block_number = 1
        self.fail_next: int = 0  # number of upcoming queries to fail

    def fund(self, address: str, amount_wei: int) -> None:
        """Credit an address (simulated deposit)."""
        key = to_checksum_address(address)
        self.balances[key] = self.balances.get(key, 0) + amount_wei
        logger.info(f"[SIMULATED] Funded {key} with {amount_wei} wei on {self.name}")

    def _maybe_fail(self, method: str) -> None:
        if self.fail_next > 0:
            self.fail_next -= 1
            raise RpcTransientError(self.network.value, method, "simulated outage")

    async def get_balance(self, address: str) -> int:
        self._maybe_fail("eth_getBalance")
        return self.balances.get(to_checksum_address(address), 0)

    async def get_fee_data(self) -> FeeData:
        self._maybe_fail("eth_gasPrice")
        return FeeData(gas_price=self.gas_price)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        self._maybe_fail("eth_getTransactionCount")
        return self.nonces.get(to_checksum_address(address), 0)

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        method = "eth_sendRawTransaction"
        raw = bytes(raw_tx)
        sender = to_checksum_address(Account.recover_transaction(raw))
        # legacy layout: [nonce, gasPrice, gas, to, value, data, v, r, s]
        nonce, gas_price, gas, to, value = rlp.decode(raw)[:5]
        nonce = int.from_bytes(nonce, "big")
        gas_price = int.from_bytes(gas_price, "big")
        gas = int.from_bytes(gas, "big")
        value = int.from_bytes(value, "big")
        recipient = to_checksum_address(to)

        expected_nonce = self.nonces.get(sender, 0)
        if nonce < expected_nonce:
            raise JsonRpcError(self.network.value, method, -32000, "nonce too low")
        if nonce > expected_nonce:
            raise JsonRpcError(self.network.value, method, -32000, "nonce too high")
        if gas_price < self.gas_price:
            raise JsonRpcError(
                self.network.value, method, -32000, "transaction underpriced"
            )

        balance = self.balances.get(sender, 0)
        if balance < value + gas * gas_price:
            raise JsonRpcError(
                self.network.value,
                method,
                -32000,
                "insufficient funds for gas * price + value",
            )

        tx_hash = "0x" + keccak(raw).hex()
        fee = TRANSFER_GAS_USED * gas_price
        self.balances[sender] = balance - value - fee
        self.balances[recipient] = self.balances.get(recipient, 0) + value
        self.nonces[sender] = expected_nonce + 1
        self.sent.append(
            {
                "hash": tx_hash,
                "from": sender,
                "to": recipient,
                "value": value,
                "gas": gas,
                "gasPrice": gas_price,
                "nonce": nonce,
            }
        )

        if self.auto_mine:
            self.mine(tx_hash)

        logger.info(f"[SIMULATED] {sender} -> {recipient}: {value} wei ({tx_hash})")
        return tx_hash

    def mine(self, tx_hash: str, status: int = 1) -> TransactionReceipt:
        """Produce a receipt for a previously sent transaction."""
        self.block_number += 1
        receipt = TransactionReceipt(
            tx_hash=tx_hash,
            status=status,
            block_number=self.block_number,
            gas_used=TRANSFER_GAS_USED,
        )
        self.receipts[tx_hash] = receipt
        return receipt

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        self._maybe_fail("eth_getTransactionReceipt")
        return self.receipts.get(tx_hash)
