"""
Whitelist eligibility.

The proof table is produced offline (one Merkle proof per whitelisted
address) and loaded once at startup. It only serves clients who want to look
up their own proof. Eligibility is always decided by the contract's
``isWhitelisted`` view call, so a stale or forged proof can never buy a free
mint.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import RPCError
from .logging_utils import RelayLogger

logger = logging.getLogger(__name__)


class ProofTable:
    """Read-only mapping of lower-case address -> Merkle proof."""

    def __init__(self, entries: Optional[Mapping[str, Sequence[str]]] = None):
        normalized: Dict[str, tuple] = {}
        for address, proof in (entries or {}).items():
            normalized[str(address).strip().lower()] = tuple(str(p) for p in proof)
        self._entries: Mapping[str, tuple] = MappingProxyType(normalized)

    @classmethod
    def from_file(cls, path: str | Path) -> "ProofTable":
        """Load a JSON proof table.

        Accepts either ``{address: [proof...]}`` or
        ``{"proofs": {address: [proof...]}}``.
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(raw, dict) and isinstance(raw.get("proofs"), dict):
            raw = raw["proofs"]
        if not isinstance(raw, dict):
            raise ValueError(f"Whitelist file {path} must contain a JSON object")
        table = cls(raw)
        logger.info(f"Loaded {len(table)} whitelist proofs from {path}")
        return table

    def get_proof(self, address: str) -> Optional[List[str]]:
        proof = self._entries.get(address.strip().lower())
        return list(proof) if proof is not None else None

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.strip().lower() in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class WhitelistOracle:
    """Decides free-mint eligibility by re-verifying proofs on-chain."""

    def __init__(
        self,
        contract: Any,
        proof_table: Optional[ProofTable] = None,
        relay_logger: Optional[RelayLogger] = None,
    ):
        self._contract = contract
        self._table = proof_table or ProofTable()
        self._log = relay_logger or RelayLogger()

    @property
    def proof_table(self) -> ProofTable:
        return self._table

    def lookup_proof(self, address: str) -> Optional[List[str]]:
        return self._table.get_proof(address)

    async def is_whitelisted(self, address: str, proof: Optional[Sequence[str]]) -> bool:
        """Return True only if the contract accepts ``proof`` for ``address``.

        No proof means the paid tier. A malformed proof or a failing
        verification call degrades to the paid tier instead of failing.
        """
        if not proof:
            return False

        who = self._log.address(address)
        try:
            verified = await self._contract.is_whitelisted(address, list(proof))
        except ValueError as e:
            logger.warning(f"Malformed proof from {who}, treating as paid: {e}")
            return False
        except RPCError as e:
            logger.warning(f"Whitelist verification call failed for {who}: {e}")
            return False

        if not verified:
            logger.info(f"Proof rejected by contract for {who}, treating as paid")
        return bool(verified)
