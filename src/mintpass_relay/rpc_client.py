"""JSON-RPC client for the relayer's chain endpoint."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import InfrastructureError, RPCError

logger = logging.getLogger(__name__)


def _to_int(value: Any, field: str) -> int:
    """Parse a hex quantity (or already-decoded int) from an RPC result."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16)
        except ValueError:
            pass
    raise InfrastructureError(f"Malformed RPC result for {field}: {value!r}")


class ChainRPCClient:
    """Async JSON-RPC client for blockchain interaction."""

    def __init__(
        self,
        rpc_url: str,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._rpc_url = rpc_url
        self._timeout = timeout_seconds
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http_client

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make JSON-RPC call."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        client = self._get_client()
        try:
            response = await client.post(
                self._rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            logger.error(f"RPC transport failure calling {method}: {e}")
            raise InfrastructureError(f"RPC endpoint unreachable: {e}") from e
        except ValueError as e:
            raise InfrastructureError(f"RPC returned invalid JSON for {method}") from e

        if not isinstance(result, dict):
            raise InfrastructureError(f"RPC returned malformed response for {method}")

        if result.get("error"):
            error = result["error"]
            if isinstance(error, dict):
                raise RPCError(
                    str(error.get("message", "RPC error")),
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise RPCError(str(error))

        return result.get("result")

    async def get_chain_id(self) -> int:
        result = await self._call("eth_chainId")
        return _to_int(result, "eth_chainId")

    async def get_balance(self, address: str, block: str = "latest") -> int:
        """Get native balance in wei."""
        result = await self._call("eth_getBalance", [address, block])
        return _to_int(result, "eth_getBalance")

    async def get_gas_price(self) -> int:
        """Get current gas price in wei."""
        result = await self._call("eth_gasPrice")
        return _to_int(result, "eth_gasPrice")

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """Estimate gas for a transaction. Reverts raise RPCError."""
        result = await self._call("eth_estimateGas", [tx])
        return _to_int(result, "eth_estimateGas")

    async def eth_call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        result = await self._call("eth_call", [tx, block])
        if not isinstance(result, str):
            raise InfrastructureError(f"Malformed eth_call result: {result!r}")
        return result

    async def get_nonce(self, address: str) -> int:
        """Get transaction count (nonce) for address."""
        result = await self._call("eth_getTransactionCount", [address, "pending"])
        return _to_int(result, "eth_getTransactionCount")

    async def send_raw_transaction(self, signed_tx: str) -> str:
        """Broadcast signed transaction."""
        result = await self._call("eth_sendRawTransaction", [signed_tx])
        if not isinstance(result, str):
            raise InfrastructureError(f"Malformed eth_sendRawTransaction result: {result!r}")
        return result

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Get transaction receipt, None while pending."""
        return await self._call("eth_getTransactionReceipt", [tx_hash])

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
