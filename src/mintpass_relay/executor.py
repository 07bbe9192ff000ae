"""
Relayer transaction execution.

The relayer account pays gas (and the paid-tier mint price) for the user:

1. Balance guard: refuse when the relayer cannot cover value + gas reserve
2. Simulation: dry-run the mint, size the gas limit with a 20% buffer
3. Submission: atomic nonce, local signing, broadcast
4. Confirmation: poll for the receipt up to a fixed timeout
5. Result extraction: read the minted token id from the Transfer log

Steps 1-2 have no side effects. Nothing from step 3 on is retried here: once a
transaction is broadcast it cannot be recalled, and a timeout means the
outcome is unknown rather than failed.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from eth_account import Account
from web3 import Web3

from .contract import PassContract, extract_token_id
from .errors import (
    ConfirmationTimeout,
    InfrastructureError,
    RPCError,
    RelayerUnderfunded,
    SimulationFailed,
    SubmissionIndeterminate,
    TransactionReverted,
)
from .logging_utils import OperationType, RelayLogger
from .nonce_manager import NonceManager
from .simulation import GasEstimation, TransactionSimulator

logger = logging.getLogger(__name__)


def _receipt_int(receipt: Dict[str, Any], key: str) -> Optional[int]:
    value = receipt.get(key)
    if value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        return int(value, 16)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class RelayOutcome:
    """Result of one relayed mint. Immutable once produced."""
    success: bool
    transaction_reference: Optional[str]
    confirmed_block: Optional[int] = None
    minted_token_id: Optional[int] = None
    cost_paid_by_relayer: int = 0  # Gas cost in wei
    value_paid: int = 0  # Mint price sent with the call, in wei
    gas_used: Optional[int] = None
    error_kind: Optional[str] = None


@dataclass(frozen=True)
class SubmittedTx:
    tx_hash: str
    nonce: int
    gas_limit: int
    gas_price: int
    value: int


@dataclass(frozen=True)
class RelayerStatus:
    relayer_address: str
    balance_wei: int
    total_minted: int
    contract_address: str
    network: str
    chain_id: int
    pending_transactions: int = 0


class RelayExecutor:
    """
    Funds, simulates, submits and confirms mint transactions.

    SECURITY: All submissions from the relayer go through one lock so nonces
    are reserved and broadcast in the same order.
    """

    def __init__(
        self,
        rpc_client: Any,
        contract: PassContract,
        relayer_private_key: str,
        chain_id: int,
        *,
        gas_reserve_wei: int,
        simulator: Optional[TransactionSimulator] = None,
        nonce_manager: Optional[NonceManager] = None,
        confirmation_timeout_seconds: float = 60.0,
        poll_interval_seconds: float = 2.0,
        network_name: str = "",
        relay_logger: Optional[RelayLogger] = None,
    ):
        self._rpc = rpc_client
        self._contract = contract
        self._account = Account.from_key(relayer_private_key)
        self._chain_id = chain_id
        self._gas_reserve_wei = gas_reserve_wei
        self._simulator = simulator or TransactionSimulator()
        self._nonces = nonce_manager or NonceManager()
        self._confirmation_timeout = confirmation_timeout_seconds
        self._poll_interval = poll_interval_seconds
        self._network_name = network_name
        self._log = relay_logger or RelayLogger()
        self._submit_lock = asyncio.Lock()

        logger.info(
            f"RelayExecutor initialized: chain_id={chain_id} "
            f"relayer={self._account.address} contract={contract.address}"
        )

    @property
    def relayer_address(self) -> str:
        return self._account.address

    @property
    def nonce_manager(self) -> NonceManager:
        return self._nonces

    def required_balance(self, required_value: int) -> int:
        return required_value + self._gas_reserve_wei

    async def check_balance(self, required_value: int) -> int:
        """
        Raises:
            RelayerUnderfunded: Balance does not exceed value + gas reserve
        """
        balance = await self._rpc.get_balance(self.relayer_address)
        floor = self.required_balance(required_value)
        if balance <= floor:
            logger.error(
                f"ALERT: relayer {self.relayer_address} underfunded: "
                f"balance={balance} wei, required>{floor} wei"
            )
            raise RelayerUnderfunded(balance_wei=balance, required_wei=floor)
        return balance

    def _mint_params(self, proof: Sequence[str], required_value: int) -> Dict[str, Any]:
        return {
            "from": self.relayer_address,
            "to": self._contract.address,
            "data": self._contract.mint_calldata(proof),
            "value": hex(required_value),
        }

    async def simulate(self, proof: Sequence[str], required_value: int) -> GasEstimation:
        """
        Raises:
            SimulationFailed: The mint would revert
            RelayerUnderfunded: The node rejected the dry run for lack of funds
        """
        try:
            return await self._simulator.estimate(
                self._rpc, self._mint_params(proof, required_value)
            )
        except SimulationFailed as e:
            reason = (e.revert_reason or e.message).lower()
            if "insufficient funds" not in reason:
                raise
            floor = self.required_balance(required_value)
            logger.error(
                f"ALERT: relayer {self.relayer_address} underfunded: "
                f"simulation rejected ({e.revert_reason}), required>{floor} wei"
            )
            raise RelayerUnderfunded(balance_wei=None, required_wei=floor) from e

    async def submit(
        self,
        proof: Sequence[str],
        required_value: int,
        gas_limit: int,
    ) -> SubmittedTx:
        """Sign and broadcast the mint from the relayer account."""
        data = self._contract.mint_calldata(proof)

        async with self._submit_lock:
            gas_price = await self._rpc.get_gas_price()
            nonce = await self._nonces.reserve_nonce(self.relayer_address, self._rpc)
            tx = {
                "nonce": nonce,
                "to": self._contract.address,
                "value": required_value,
                "gas": gas_limit,
                "gasPrice": gas_price,
                "data": data,
                "chainId": self._chain_id,
            }
            signed = self._account.sign_transaction(tx)
            try:
                tx_hash = await self._rpc.send_raw_transaction(Web3.to_hex(signed.raw_transaction))
            except RPCError as e:
                # The node answered and refused the transaction
                await self._nonces.release_nonce(self.relayer_address, nonce)
                logger.error(f"Broadcast failed for nonce {nonce}: {e}")
                raise InfrastructureError(f"Transaction broadcast failed: {e.message}") from e
            except InfrastructureError as e:
                # No answer: the node may have accepted and propagated it
                tx_hash = Web3.to_hex(Web3.keccak(signed.raw_transaction))
                self._nonces.register_pending_transaction(tx_hash, self.relayer_address, nonce)
                logger.error(
                    f"Broadcast of {tx_hash} (nonce {nonce}) has unknown outcome: {e}"
                )
                raise SubmissionIndeterminate(tx_hash, e.message) from e

            self._nonces.register_pending_transaction(tx_hash, self.relayer_address, nonce)

        self._log.log_transaction_submitted(
            tx_hash=tx_hash,
            from_address=self.relayer_address,
            to_address=self._contract.address,
            nonce=nonce,
            value_wei=required_value,
            gas_limit=gas_limit,
            gas_price=gas_price,
        )
        return SubmittedTx(
            tx_hash=tx_hash,
            nonce=nonce,
            gas_limit=gas_limit,
            gas_price=gas_price,
            value=required_value,
        )

    async def _poll_receipt(self, tx_hash: str) -> Dict[str, Any]:
        while True:
            try:
                receipt = await self._rpc.get_transaction_receipt(tx_hash)
            except InfrastructureError as e:
                # Already broadcast: a failed read must not turn into a hard failure
                logger.warning(f"Receipt poll for {tx_hash} failed: {e}")
                receipt = None
            if receipt and receipt.get("blockNumber") is not None:
                return receipt
            await asyncio.sleep(self._poll_interval)

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """
        Wait for inclusion, bounded by the confirmation timeout.

        Raises:
            ConfirmationTimeout: No receipt in time (outcome unknown)
            TransactionReverted: Mined with status 0
        """
        try:
            receipt = await asyncio.wait_for(
                self._poll_receipt(tx_hash),
                timeout=self._confirmation_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Transaction {tx_hash} not confirmed after {self._confirmation_timeout}s; "
                "outcome indeterminate"
            )
            raise ConfirmationTimeout(tx_hash, self._confirmation_timeout) from None

        self._nonces.mark_settled(tx_hash)
        if _receipt_int(receipt, "status") == 0:
            block = _receipt_int(receipt, "blockNumber")
            logger.error(f"Transaction {tx_hash} reverted in block {block}")
            raise TransactionReverted(tx_hash, block)
        return receipt

    async def execute(
        self,
        address: str,
        proof: Sequence[str],
        required_value: int,
    ) -> RelayOutcome:
        """Run the full relay for one mint."""
        proof = list(proof or [])

        async with self._log.operation_context(
            OperationType.BALANCE_CHECK, address=self._log.address(address)
        ):
            await self.check_balance(required_value)

        async with self._log.operation_context(OperationType.SIMULATION) as ctx:
            estimation = await self.simulate(proof, required_value)
            ctx.metadata["estimated_gas"] = estimation.estimated_gas

        async with self._log.operation_context(OperationType.TRANSACTION_SUBMIT):
            submitted = await self.submit(proof, required_value, estimation.gas_limit)

        async with self._log.operation_context(
            OperationType.TRANSACTION_CONFIRM, tx_hash=submitted.tx_hash
        ):
            receipt = await self.wait_for_receipt(submitted.tx_hash)

        gas_used = _receipt_int(receipt, "gasUsed")
        gas_price = _receipt_int(receipt, "effectiveGasPrice") or submitted.gas_price
        cost = (gas_used or 0) * gas_price
        block = _receipt_int(receipt, "blockNumber")

        token_id = extract_token_id(receipt.get("logs") or [], self._contract.address)
        if token_id is None:
            logger.warning(f"Could not extract token id from {submitted.tx_hash}")

        self._log.log_transaction_confirmed(submitted.tx_hash, block, gas_used, cost)
        return RelayOutcome(
            success=True,
            transaction_reference=submitted.tx_hash,
            confirmed_block=block,
            minted_token_id=token_id,
            cost_paid_by_relayer=cost,
            value_paid=required_value,
            gas_used=gas_used,
        )

    async def relayer_status(self) -> RelayerStatus:
        balance = await self._rpc.get_balance(self.relayer_address)
        total = await self._contract.total_minted()
        return RelayerStatus(
            relayer_address=self.relayer_address,
            balance_wei=balance,
            total_minted=total,
            contract_address=self._contract.address,
            network=self._network_name,
            chain_id=self._chain_id,
            pending_transactions=self._nonces.get_pending_count(self.relayer_address),
        )
