"""
Pre-submission simulation and gas estimation.

Features:
- ``eth_estimateGas`` as a dry run of the exact mint call
- Fixed safety buffer on the gas limit
- Revert reason extraction (plain text and ABI ``Error(string)``)

A simulation that reverts is reported before any funds move.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import RPCError, SimulationFailed

logger = logging.getLogger(__name__)

ERROR_STRING_SELECTOR = "0x08c379a0"
PANIC_SELECTOR = "0x4e487b71"


@dataclass(frozen=True)
class GasEstimation:
    """Raw and buffered gas limits for one call."""
    estimated_gas: int
    gas_limit: int
    buffer_percent: int


def decode_error_string(data: str) -> Optional[str]:
    """Decode ABI-encoded ``Error(string)`` revert data.

    Layout: 4-byte selector, 32-byte offset, 32-byte length, UTF-8 bytes.
    """
    idx = data.find(ERROR_STRING_SELECTOR)
    if idx == -1:
        return None
    hex_data = "".join(c for c in data[idx + 2:] if c in "0123456789abcdefABCDEF")
    if len(hex_data) < 8 + 64 + 64:
        return None
    try:
        length = int(hex_data[8 + 64 : 8 + 128], 16)
        start = 8 + 128
        return bytes.fromhex(hex_data[start : start + length * 2]).decode(
            "utf-8", errors="replace"
        )
    except ValueError:
        return None


def extract_revert_reason(error: Exception) -> Optional[str]:
    """Best-effort human-readable revert reason from an RPC error."""
    data = getattr(error, "data", None)
    if isinstance(data, dict):
        data = data.get("data") or data.get("message")
    if isinstance(data, str):
        if data.startswith(ERROR_STRING_SELECTOR):
            decoded = decode_error_string(data)
            if decoded:
                return decoded
        if data.startswith(PANIC_SELECTOR):
            return "Panic: assertion failed or arithmetic error"

    message = str(error)
    lowered = message.lower()
    if "execution reverted:" in lowered:
        idx = lowered.find("execution reverted:")
        return message[idx + len("execution reverted:"):].strip() or None
    if ERROR_STRING_SELECTOR in message:
        return decode_error_string(message)
    if "revert" in lowered:
        return message
    return None


class TransactionSimulator:
    """Dry-runs a call with ``eth_estimateGas`` and sizes its gas limit."""

    def __init__(self, gas_limit_buffer_percent: int = 20):
        self._buffer_percent = gas_limit_buffer_percent

    def apply_buffer(self, estimated_gas: int) -> int:
        return estimated_gas * (100 + self._buffer_percent) // 100

    async def estimate(self, rpc_client: Any, tx_params: Dict[str, Any]) -> GasEstimation:
        """
        Simulate ``tx_params`` and return a buffered gas limit.

        Raises:
            SimulationFailed: The node rejected the call (revert, insufficient funds)
            InfrastructureError: The node could not be reached
        """
        try:
            estimated = await rpc_client.estimate_gas(tx_params)
        except RPCError as e:
            reason = extract_revert_reason(e) or e.message
            logger.warning(f"Simulation rejected by node: {e.message} (reason={reason!r})")
            raise SimulationFailed(f"Transaction would fail: {reason}", revert_reason=reason) from e

        gas_limit = self.apply_buffer(estimated)
        logger.debug(f"Estimated gas {estimated}, limit with buffer {gas_limit}")
        return GasEstimation(
            estimated_gas=estimated,
            gas_limit=gas_limit,
            buffer_percent=self._buffer_percent,
        )
