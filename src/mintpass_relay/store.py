"""
Player profile store used as a cache of mint results.

The contract is authoritative for whether a wallet has minted; this store only
lets the game API show pass ownership without an RPC round-trip.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class PlayerEntitlement:
    """Pass ownership fields of a player profile."""
    wallet_address: str
    nft_pass: bool = False
    nft_transaction_hash: Optional[str] = None
    nft_token_id: Optional[int] = None
    nft_minted_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PlayerStore(ABC):
    """Abstract interface for player entitlement storage."""

    @abstractmethod
    async def get(self, wallet_address: str) -> Optional[PlayerEntitlement]:
        """Get a player's entitlement by wallet address."""
        pass

    @abstractmethod
    async def mark_minted(
        self,
        wallet_address: str,
        tx_hash: str,
        token_id: Optional[int],
    ) -> PlayerEntitlement:
        """Upsert the pass flag for a wallet."""
        pass


class InMemoryPlayerStore(PlayerStore):
    """
    In-memory player store for development and testing.

    Note: Not shared between processes. Production deployments plug in a
    persistent implementation of ``PlayerStore``.
    """

    def __init__(self):
        self._players: Dict[str, PlayerEntitlement] = {}

    async def get(self, wallet_address: str) -> Optional[PlayerEntitlement]:
        return self._players.get(wallet_address.lower())

    async def mark_minted(
        self,
        wallet_address: str,
        tx_hash: str,
        token_id: Optional[int],
    ) -> PlayerEntitlement:
        key = wallet_address.lower()
        now = datetime.now(timezone.utc)
        existing = self._players.get(key) or PlayerEntitlement(wallet_address=key)
        record = replace(
            existing,
            nft_pass=True,
            nft_transaction_hash=tx_hash,
            nft_token_id=token_id,
            nft_minted_at=now,
            updated_at=now,
        )
        self._players[key] = record
        return record
