"""
Logging utilities for relay operations.

Features:
- Timed operation contexts for each relay step
- Transaction lifecycle log lines
- Optional address masking for operator logs
"""
from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional


class OperationType(str, Enum):
    """Relay pipeline steps."""
    AUTHENTICATE = "authenticate"
    ENTITLEMENT_CHECK = "entitlement_check"
    WHITELIST_CHECK = "whitelist_check"
    BALANCE_CHECK = "balance_check"
    SIMULATION = "simulation"
    TRANSACTION_SUBMIT = "transaction_submit"
    TRANSACTION_CONFIRM = "transaction_confirm"
    PERSIST_RESULT = "persist_result"


@dataclass
class OperationContext:
    """Context for one relay step."""
    operation_id: str
    operation_type: OperationType
    started_at: float = field(default_factory=time.monotonic)
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        self.duration_ms = (time.monotonic() - self.started_at) * 1000
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type.value,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


def mask_address(address: str) -> str:
    """Partially mask an address for privacy."""
    if not address or len(address) < 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


class RelayLogger:
    """Structured logger for the relay pipeline."""

    def __init__(self, name: str = "mintpass_relay", mask_addresses: bool = False):
        self._logger = logging.getLogger(name)
        self._mask = mask_addresses
        self._operation_counter = 0

    def address(self, address: str) -> str:
        return mask_address(address) if self._mask else address

    def _generate_operation_id(self) -> str:
        self._operation_counter += 1
        return f"op_{int(time.time() * 1000)}_{self._operation_counter}"

    @staticmethod
    def _format(data: Dict[str, Any]) -> str:
        def convert(obj):
            if isinstance(obj, Decimal):
                return str(obj)
            if isinstance(obj, datetime):
                return obj.isoformat()
            if isinstance(obj, Enum):
                return obj.value
            return obj

        return json.dumps({k: convert(v) for k, v in data.items()}, default=str)

    @asynccontextmanager
    async def operation_context(
        self,
        operation_type: OperationType,
        **metadata: Any,
    ) -> AsyncIterator[OperationContext]:
        """
        Time one relay step.

        Usage:
            async with relay_logger.operation_context(OperationType.SIMULATION) as ctx:
                ctx.metadata["gas"] = gas
        """
        ctx = OperationContext(
            operation_id=self._generate_operation_id(),
            operation_type=operation_type,
            metadata=metadata,
        )
        self._logger.debug(f"Starting {operation_type.value}")
        try:
            yield ctx
            ctx.complete(success=True)
        except Exception as e:
            ctx.complete(success=False, error=str(e))
            raise
        finally:
            if ctx.duration_ms is None:
                ctx.complete(success=False, error="cancelled")
            level = logging.INFO if ctx.success else logging.WARNING
            self._logger.log(
                level,
                f"Completed {operation_type.value} in {ctx.duration_ms:.0f}ms "
                f"(success={ctx.success})",
                extra={"operation": ctx.to_dict()},
            )

    def log_transaction_submitted(
        self,
        tx_hash: str,
        from_address: str,
        to_address: str,
        nonce: int,
        value_wei: int,
        gas_limit: int,
        gas_price: int,
    ) -> None:
        self._logger.info(
            f"Transaction submitted: {tx_hash} "
            + self._format({
                "from": self.address(from_address),
                "to": to_address,
                "nonce": nonce,
                "value_wei": value_wei,
                "gas_limit": gas_limit,
                "gas_price": gas_price,
                "submitted_at": datetime.now(timezone.utc),
            })
        )

    def log_transaction_confirmed(
        self,
        tx_hash: str,
        block_number: Optional[int],
        gas_used: Optional[int],
        cost_wei: int,
    ) -> None:
        self._logger.info(
            f"Transaction confirmed: {tx_hash} "
            + self._format({"block": block_number, "gas_used": gas_used, "cost_wei": cost_wei})
        )


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Set up logging configuration.

    Args:
        level: Log level
        format_string: Custom format string
        json_format: Use JSON formatting
    """
    if format_string is None:
        if json_format:
            format_string = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        else:
            format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=format_string,
    )

    logging.getLogger("mintpass_relay").setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
