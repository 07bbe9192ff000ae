"""
Response normalization and best-effort result persistence.

Success and failure responses have a fixed shape (camelCase on the wire).
Writing the result to the player store is a convenience: if it fails the mint
is still reported as successful, since the chain already recorded it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .errors import RelayError, SimulationFailed
from .executor import RelayOutcome
from .fees import FeePolicy
from .logging_utils import RelayLogger
from .store import PlayerStore

logger = logging.getLogger(__name__)

# Known revert substrings -> user-facing text. First match wins.
REVERT_MESSAGES: Tuple[Tuple[str, str], ...] = (
    ("already minted", "You already minted your NFT Pass."),
    ("max supply", "All NFTs have been minted!"),
    ("supply", "All NFTs have been minted!"),
    ("insufficient funds", "Relayer out of funds. Contact admin."),
    ("not whitelisted", "This wallet is not on the whitelist."),
    ("invalid proof", "This wallet is not on the whitelist."),
    ("incorrect payment", "Mint price mismatch. Please try again."),
)
GENERIC_REVERT_MESSAGE = "Minting failed. Please try again."


def friendly_revert_message(reason: Optional[str]) -> str:
    """Map a raw revert reason to a message safe to show users."""
    if not reason:
        return GENERIC_REVERT_MESSAGE
    lowered = reason.lower()
    for needle, message in REVERT_MESSAGES:
        if needle in lowered:
            return message
    return f"Transaction would fail: {reason}"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MintSuccessResponse(_WireModel):
    success: Literal[True] = True
    message: str
    transaction_reference: str
    minted_token_id: Optional[int] = None
    cost_paid_by_relayer: str
    whitelisted: bool
    mint_price: str
    block_number: Optional[int] = None
    explorer_url: Optional[str] = None


class MintFailureResponse(_WireModel):
    success: Literal[False] = False
    message: str
    error_kind: str
    outcome: Literal["failed", "indeterminate"] = "failed"
    transaction_reference: Optional[str] = None


@dataclass(frozen=True)
class RelayResponse:
    """HTTP-style status plus JSON body."""
    status_code: int
    body: Dict[str, Any]

    @property
    def success(self) -> bool:
        return bool(self.body.get("success"))


class ResultReporter:
    """Turns relay outcomes and errors into responses."""

    def __init__(
        self,
        fee_policy: FeePolicy,
        store: Optional[PlayerStore] = None,
        explorer_url: Optional[Callable[[str], str]] = None,
        relay_logger: Optional[RelayLogger] = None,
    ):
        self._fees = fee_policy
        self._store = store
        self._explorer_url = explorer_url
        self._log = relay_logger or RelayLogger()

    async def _persist(self, address: str, outcome: RelayOutcome) -> None:
        if self._store is None or not outcome.transaction_reference:
            return
        try:
            await self._store.mark_minted(
                address,
                outcome.transaction_reference,
                outcome.minted_token_id,
            )
        except Exception as e:
            logger.warning(
                f"Player store update failed for {self._log.address(address)} "
                f"(tx {outcome.transaction_reference}): {e}"
            )

    async def report_success(
        self,
        address: str,
        outcome: RelayOutcome,
        whitelisted: bool,
    ) -> RelayResponse:
        await self._persist(address, outcome)

        price = self._fees.describe(outcome.value_paid)
        message = (
            "NFT minted successfully for FREE!"
            if whitelisted
            else f"NFT minted successfully! {price} paid."
        )
        tx_hash = outcome.transaction_reference or ""
        response = MintSuccessResponse(
            message=message,
            transaction_reference=tx_hash,
            minted_token_id=outcome.minted_token_id,
            cost_paid_by_relayer=self._fees.describe(outcome.cost_paid_by_relayer),
            whitelisted=whitelisted,
            mint_price=price,
            block_number=outcome.confirmed_block,
            explorer_url=self._explorer_url(tx_hash) if self._explorer_url and tx_hash else None,
        )
        return RelayResponse(status_code=200, body=response.model_dump(by_alias=True))

    def report_failure(self, error: RelayError) -> RelayResponse:
        message = error.message
        if isinstance(error, SimulationFailed):
            if error.revert_reason:
                logger.warning(f"Mint simulation reverted: {error.revert_reason}")
            message = friendly_revert_message(error.revert_reason)

        response = MintFailureResponse(
            message=message,
            error_kind=error.error_kind,
            outcome="indeterminate" if error.indeterminate else "failed",
            transaction_reference=getattr(error, "tx_hash", None),
        )
        return RelayResponse(
            status_code=error.status_code,
            body=response.model_dump(by_alias=True, exclude_none=True),
        )
