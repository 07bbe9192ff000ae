"""
Pass contract bindings.

The relayer only needs four entry points of the deployed pass contract:

    function mint(bytes32[] calldata merkleProof) external payable
    function hasMinted(address account) external view returns (bool)
    function totalMinted() external view returns (uint256)
    function isWhitelisted(address account, bytes32[] calldata proof) external view returns (bool)

plus the ERC-721 ``Transfer(address,address,uint256)`` event emitted on mint.
Calldata is encoded with eth-abi; view calls go through ``eth_call``.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from eth_abi import decode, encode
from web3 import Web3

from .errors import InfrastructureError

logger = logging.getLogger(__name__)

BYTES32_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


def _selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


MINT_SELECTOR = _selector("mint(bytes32[])")
HAS_MINTED_SELECTOR = _selector("hasMinted(address)")
TOTAL_MINTED_SELECTOR = _selector("totalMinted()")
IS_WHITELISTED_SELECTOR = _selector("isWhitelisted(address,bytes32[])")

TRANSFER_TOPIC = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))


def parse_proof(proof: Optional[Sequence[str]]) -> List[bytes]:
    """Convert a client proof (0x-prefixed 32-byte hex strings) to bytes.

    Raises:
        ValueError: If any entry is not a 32-byte hex value
    """
    if not proof:
        return []
    parsed: List[bytes] = []
    for index, item in enumerate(proof):
        if not isinstance(item, str) or not BYTES32_PATTERN.fullmatch(item.strip()):
            raise ValueError(f"merkleProof[{index}] is not a 32-byte hex value")
        parsed.append(bytes.fromhex(item.strip()[2:]))
    return parsed


def encode_mint(proof: Optional[Sequence[str]]) -> str:
    """Encode ``mint(bytes32[])`` calldata as 0x-prefixed hex."""
    data = MINT_SELECTOR + encode(["bytes32[]"], [parse_proof(proof)])
    return "0x" + data.hex()


def extract_token_id(
    logs: Iterable[Dict[str, Any]],
    contract_address: Optional[str] = None,
) -> Optional[int]:
    """Read the minted token id from a receipt's Transfer log.

    Returns None when no matching log is found or it cannot be parsed.
    """
    contract_lower = contract_address.lower() if contract_address else None
    for log in logs or []:
        topics = log.get("topics") or []
        if len(topics) < 4:
            continue
        if str(topics[0]).lower() != TRANSFER_TOPIC.lower():
            continue
        if contract_lower and str(log.get("address", "")).lower() != contract_lower:
            continue
        try:
            return int(str(topics[3]), 16)
        except ValueError:
            logger.warning(f"Unparsable token id topic in Transfer log: {topics[3]!r}")
            return None
    return None


class PassContract:
    """Read-side binding for the pass contract."""

    def __init__(self, rpc_client: Any, address: str):
        self._rpc = rpc_client
        self.address = Web3.to_checksum_address(address)

    async def _view(self, data: bytes) -> bytes:
        result = await self._rpc.eth_call(
            {"to": self.address, "data": "0x" + data.hex()},
            "latest",
        )
        try:
            return bytes.fromhex(result[2:] if result.startswith("0x") else result)
        except ValueError as e:
            raise InfrastructureError(f"Malformed eth_call result: {result!r}") from e

    async def has_minted(self, account: str) -> bool:
        raw = await self._view(
            HAS_MINTED_SELECTOR + encode(["address"], [Web3.to_checksum_address(account)])
        )
        try:
            (value,) = decode(["bool"], raw)
        except Exception as e:
            raise InfrastructureError(f"Cannot decode hasMinted result: {e}") from e
        return bool(value)

    async def total_minted(self) -> int:
        raw = await self._view(TOTAL_MINTED_SELECTOR)
        try:
            (value,) = decode(["uint256"], raw)
        except Exception as e:
            raise InfrastructureError(f"Cannot decode totalMinted result: {e}") from e
        return int(value)

    async def is_whitelisted(self, account: str, proof: Sequence[str]) -> bool:
        """Verify a proof on-chain. Malformed proof entries raise ValueError."""
        data = IS_WHITELISTED_SELECTOR + encode(
            ["address", "bytes32[]"],
            [Web3.to_checksum_address(account), parse_proof(proof)],
        )
        raw = await self._view(data)
        try:
            (value,) = decode(["bool"], raw)
        except Exception as e:
            raise InfrastructureError(f"Cannot decode isWhitelisted result: {e}") from e
        return bool(value)

    def mint_calldata(self, proof: Optional[Sequence[str]]) -> str:
        return encode_mint(proof)
