"""
One-mint-per-wallet guard.

The contract is the source of truth for ``hasMinted``; this module only keeps
the relayer from paying for two submissions for the same wallet while the
first is still in flight.

Features:
- Authoritative ``hasMinted`` check before any lease is granted
- Per-address exclusive leases with random tokens
- Lease expiry so a crashed request cannot lock a wallet out forever
- Token-checked release (a stale holder cannot release its successor)

Leases are process-local. Across several relayer processes the contract's
own state transition is what rejects a second mint.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .errors import AlreadyMinted, ConcurrentMintInProgress
from .logging_utils import OperationType, RelayLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    """Exclusive, expiring claim on one wallet address."""
    address: str
    token: str
    acquired_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class LeaseTable:
    """Concurrency-safe address -> lease map with expiry."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        relay_logger: Optional[RelayLogger] = None,
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._log = relay_logger or RelayLogger()
        self._leases: Dict[str, Lease] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, address: str) -> Optional[Lease]:
        """Grant a lease, or return None if a live one is held."""
        key = address.lower()
        async with self._lock:
            now = self._clock()
            current = self._leases.get(key)
            if current is not None:
                if not current.is_expired(now):
                    return None
                logger.warning(
                    f"Reclaiming expired lease for {self._log.address(key)} "
                    f"(held {now - current.acquired_at:.0f}s)"
                )

            lease = Lease(
                address=key,
                token=secrets.token_hex(16),
                acquired_at=now,
                expires_at=now + self._ttl,
            )
            self._leases[key] = lease
            return lease

    async def release(self, lease: Lease) -> bool:
        """Drop the lease if ``lease`` is still the current holder."""
        async with self._lock:
            current = self._leases.get(lease.address)
            if current is None or current.token != lease.token:
                return False
            del self._leases[lease.address]
            return True

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [k for k, v in self._leases.items() if v.is_expired(now)]
            for key in expired:
                del self._leases[key]
        if expired:
            logger.warning(f"Purged {len(expired)} expired mint leases")
        return len(expired)

    def is_held(self, address: str) -> bool:
        lease = self._leases.get(address.lower())
        return lease is not None and not lease.is_expired(self._clock())

    def active(self) -> List[Lease]:
        now = self._clock()
        return [lease for lease in self._leases.values() if not lease.is_expired(now)]


class EntitlementGuard:
    """
    Enforces at most one in-flight mint per wallet.

    Usage:
        async with guard.hold(address) as lease:
            ...  # submit the mint; the lease is released on every exit path
    """

    def __init__(
        self,
        contract: Any,
        leases: Optional[LeaseTable] = None,
        relay_logger: Optional[RelayLogger] = None,
    ):
        self._contract = contract
        self._log = relay_logger or RelayLogger()
        self._leases = leases or LeaseTable(relay_logger=self._log)

    @property
    def leases(self) -> LeaseTable:
        return self._leases

    async def try_acquire(self, address: str) -> Lease:
        """
        Check the ledger, then claim the address.

        Raises:
            AlreadyMinted: The contract reports a completed mint
            ConcurrentMintInProgress: Another request holds the lease
        """
        who = self._log.address(address.lower())
        async with self._log.operation_context(OperationType.ENTITLEMENT_CHECK, address=who):
            if await self._contract.has_minted(address):
                raise AlreadyMinted(address)

            lease = await self._leases.acquire(address)
            if lease is None:
                logger.info(f"Rejecting concurrent mint for {who}")
                raise ConcurrentMintInProgress(address)

        logger.debug(f"Acquired mint lease for {who}")
        return lease

    async def release(self, lease: Lease) -> None:
        released = await self._leases.release(lease)
        if released:
            logger.debug(f"Released mint lease for {self._log.address(lease.address)}")
        else:
            logger.warning(
                f"Lease for {self._log.address(lease.address)} was already reclaimed"
            )

    @asynccontextmanager
    async def hold(self, address: str) -> AsyncIterator[Lease]:
        lease = await self.try_acquire(address)
        try:
            yield lease
        finally:
            # Shielded so a cancelled request still frees the wallet
            await asyncio.shield(self.release(lease))
