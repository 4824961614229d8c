"""JSON-RPC network client over httpx.

Speaks the standard eth_* methods. Signing happens locally with
eth-account; only signed raw transactions are sent to the node.
"""

import itertools
import logging
from typing import Any, Optional

import httpx

from shuffler.errors import JsonRpcError, RpcTransientError
from shuffler.providers.base import FeeData, NetworkClient, NetworkConfig, TransactionReceipt

logger = logging.getLogger(__name__)


def _to_int(value: Optional[str], default: int = 0) -> int:
    if value is None:
        return default
    return int(value, 16)


class JsonRpcNetworkClient(NetworkClient):
    """Network client for an EVM JSON-RPC endpoint.

    Example:
        client = JsonRpcNetworkClient(config)
        balance = await client.get_balance("0x...")
        await client.aclose()
    """

    def __init__(
        self,
        config: NetworkConfig,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config)
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None
        self._ids = itertools.count(1)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Perform one JSON-RPC request and return its result field."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        try:
            response = await self._get_client().post(self.config.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise RpcTransientError(self.network.value, method, str(e) or type(e).__name__)
        except ValueError as e:
            raise RpcTransientError(self.network.value, method, f"invalid JSON: {e}")

        if "error" in data:
            error = data["error"] or {}
            logger.debug(f"{method} on {self.name} returned error: {error}")
            raise JsonRpcError(
                self.network.value,
                method,
                int(error.get("code", -32000)),
                str(error.get("message", "unknown error")),
            )

        if "result" not in data:
            raise RpcTransientError(self.network.value, method, "response has no result")

        return data["result"]

    async def get_balance(self, address: str) -> int:
        result = await self._call("eth_getBalance", [address, "latest"])
        return _to_int(result)

    async def get_fee_data(self) -> FeeData:
        result = await self._call("eth_gasPrice", [])
        return FeeData(gas_price=_to_int(result))

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        result = await self._call("eth_getTransactionCount", [address, block])
        return _to_int(result)

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        raw_hex = "0x" + bytes(raw_tx).hex()
        result = await self._call("eth_sendRawTransaction", [raw_hex])
        return result

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        result = await self._call("eth_getTransactionReceipt", [tx_hash])
        if result is None:
            return None

        return TransactionReceipt(
            tx_hash=result.get("transactionHash", tx_hash),
            status=_to_int(result.get("status"), default=0),
            block_number=_to_int(result.get("blockNumber")),
            gas_used=_to_int(result.get("gasUsed")),
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
