"""
Relayer nonce management.

Features:
- Atomic nonce reservation per sending address
- Pending transaction tracking
- Nonce release and resync after a failed broadcast
- Reconciliation of pending transactions the network dropped

SECURITY: Concurrent mints share one relayer account. Handing the same nonce
to two submissions would make one of them replace or reject the other.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class PendingTransaction:
    """A broadcast transaction awaiting a receipt."""
    tx_hash: str
    nonce: int
    address: str
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def age_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.submitted_at).total_seconds()


class NonceManager:
    """
    Hands out relayer nonces one at a time, in submission order.

    The on-chain ``pending`` transaction count is the baseline; it is re-read
    when the cache is older than ``cache_ttl_seconds`` or after a release.

    A tracked transaction whose nonce is still unused on chain after
    ``stuck_after_seconds`` was dropped by the network. It is forgotten on the
    next resync and its nonce is handed out again.
    """

    def __init__(
        self,
        cache_ttl_seconds: float = 30.0,
        stuck_after_seconds: float = 300.0,
    ):
        self._cache_ttl = cache_ttl_seconds
        self._stuck_after = stuck_after_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._nonces: Dict[str, int] = {}  # Next nonce per address
        self._last_sync: Dict[str, float] = {}
        self._pending_txs: Dict[str, PendingTransaction] = {}  # tx_hash -> pending
        self._address_pending: Dict[str, Set[str]] = {}
        self._nonce_to_tx: Dict[str, str] = {}  # "address:nonce" -> tx_hash

    def _get_lock(self, address: str) -> asyncio.Lock:
        address_lower = address.lower()
        lock = self._locks.get(address_lower)
        if lock is None:
            # No await between check and insert, so no other coroutine can interleave
            lock = self._locks[address_lower] = asyncio.Lock()
        return lock

    @staticmethod
    def _nonce_key(address: str, nonce: int) -> str:
        return f"{address.lower()}:{nonce}"

    def _forget(self, pending: PendingTransaction) -> None:
        self._pending_txs.pop(pending.tx_hash, None)
        self._address_pending.get(pending.address, set()).discard(pending.tx_hash)
        key = self._nonce_key(pending.address, pending.nonce)
        if self._nonce_to_tx.get(key) == pending.tx_hash:
            del self._nonce_to_tx[key]

    def _drop_stuck(self, address_lower: str, on_chain: int) -> List[PendingTransaction]:
        """Forget pending transactions the chain never consumed a nonce for."""
        dropped = [
            pending
            for pending in self.get_all_pending(address_lower)
            if pending.nonce >= on_chain and pending.age_seconds() > self._stuck_after
        ]
        for pending in dropped:
            self._forget(pending)
            logger.warning(
                f"Dropping stuck transaction {pending.tx_hash} nonce={pending.nonce} "
                f"after {pending.age_seconds():.0f}s; chain nonce is {on_chain}"
            )
        return dropped

    async def _next_nonce_unlocked(
        self,
        address_lower: str,
        rpc_client: Any,
        force_refresh: bool = False,
    ) -> int:
        """Caller MUST hold the per-address lock."""
        stale = time.monotonic() - self._last_sync.get(address_lower, 0.0) > self._cache_ttl
        if force_refresh or stale or address_lower not in self._nonces:
            on_chain = await rpc_client.get_nonce(address_lower)
            if self._drop_stuck(address_lower, on_chain):
                # Nonces above the chain count belonged to dropped transactions
                self._nonces[address_lower] = on_chain
            else:
                # Never move backwards past nonces we already handed out
                self._nonces[address_lower] = max(on_chain, self._nonces.get(address_lower, 0))
            self._last_sync[address_lower] = time.monotonic()
            logger.debug(f"Synced nonce for {address_lower}: {on_chain}")

        current = self._nonces[address_lower]
        for pending in self.get_all_pending(address_lower):
            if pending.nonce >= current:
                current = pending.nonce + 1
        return current

    async def get_nonce(self, address: str, rpc_client: Any, force_refresh: bool = False) -> int:
        """Peek at the next nonce without reserving it."""
        address_lower = address.lower()
        async with self._get_lock(address_lower):
            return await self._next_nonce_unlocked(address_lower, rpc_client, force_refresh)

    async def reserve_nonce(self, address: str, rpc_client: Any) -> int:
        """Reserve the next nonce for an address, skipping live pending ones."""
        address_lower = address.lower()
        async with self._get_lock(address_lower):
            nonce = await self._next_nonce_unlocked(address_lower, rpc_client)
            self._nonces[address_lower] = nonce + 1
            logger.debug(f"Reserved nonce {nonce} for {address_lower}")
            return nonce

    def register_pending_transaction(self, tx_hash: str, address: str, nonce: int) -> None:
        address_lower = address.lower()
        self._pending_txs[tx_hash] = PendingTransaction(
            tx_hash=tx_hash,
            nonce=nonce,
            address=address_lower,
        )
        self._address_pending.setdefault(address_lower, set()).add(tx_hash)
        self._nonce_to_tx[self._nonce_key(address_lower, nonce)] = tx_hash
        logger.info(f"Registered pending transaction {tx_hash} nonce={nonce}")

    def mark_settled(self, tx_hash: str) -> None:
        """Stop tracking a transaction that has a receipt."""
        pending = self._pending_txs.get(tx_hash)
        if pending:
            self._forget(pending)

    async def release_nonce(self, address: str, nonce: int) -> None:
        """Give back a nonce whose transaction never reached the network.

        Drops the cached counter so the next reservation resyncs from chain.
        """
        address_lower = address.lower()
        async with self._get_lock(address_lower):
            tx_hash = self._nonce_to_tx.get(self._nonce_key(address_lower, nonce))
            if tx_hash and tx_hash in self._pending_txs:
                self._forget(self._pending_txs[tx_hash])
            self._nonces.pop(address_lower, None)
            self._last_sync.pop(address_lower, None)
            logger.info(f"Released nonce {nonce} for {address_lower}")

    def get_pending_count(self, address: str) -> int:
        return len(self._address_pending.get(address.lower(), set()))

    def get_all_pending(self, address: Optional[str] = None) -> List[PendingTransaction]:
        if address:
            return [
                self._pending_txs[h]
                for h in self._address_pending.get(address.lower(), set())
                if h in self._pending_txs
            ]
        return list(self._pending_txs.values())
