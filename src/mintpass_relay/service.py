"""
Gasless mint orchestration.

Request flow:
    authenticate -> claim entitlement -> resolve whitelist -> price
    -> relay on-chain -> report (lease released on every exit path)

``MintRelayService`` is the only place where pipeline errors are turned into
responses. Components are injected so tests can swap any of them.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

from .auth import SignatureAuthenticator, normalize_address
from .config import RelaySettings
from .contract import PassContract
from .entitlement import EntitlementGuard, LeaseTable
from .errors import InfrastructureError, RelayError, RelayerNotConfigured
from .executor import RelayExecutor
from .fees import FeePolicy
from .logging_utils import OperationType, RelayLogger
from .nonce_manager import NonceManager
from .reporter import RelayResponse, ResultReporter
from .rpc_client import ChainRPCClient
from .simulation import TransactionSimulator
from .store import InMemoryPlayerStore, PlayerStore
from .whitelist import ProofTable, WhitelistOracle

logger = logging.getLogger(__name__)


class MintRequest(BaseModel):
    """Body of ``POST /nft/mint-gasless``.

    Fields are optional at the schema level so that missing values are
    reported as ``InputError`` by the pipeline instead of a schema error.
    """

    model_config = ConfigDict(populate_by_name=True)

    wallet_address: Optional[str] = Field(default=None, alias="walletAddress")
    signature: Optional[str] = None
    merkle_proof: List[str] = Field(default_factory=list, alias="merkleProof")

    @field_validator("merkle_proof", mode="before")
    @classmethod
    def default_empty_proof(cls, v: Any) -> Any:
        return [] if v is None else v


class MintRelayService:
    """Wires the relay components together and runs the mint pipeline."""

    def __init__(
        self,
        *,
        authenticator: SignatureAuthenticator,
        guard: EntitlementGuard,
        oracle: WhitelistOracle,
        fee_policy: FeePolicy,
        reporter: ResultReporter,
        executor: Optional[RelayExecutor] = None,
        rpc_client: Optional[ChainRPCClient] = None,
        relay_logger: Optional[RelayLogger] = None,
    ):
        self._authenticator = authenticator
        self._guard = guard
        self._oracle = oracle
        self._fees = fee_policy
        self._reporter = reporter
        self._executor = executor
        self._rpc = rpc_client
        self._log = relay_logger or RelayLogger()

    @property
    def executor(self) -> Optional[RelayExecutor]:
        return self._executor

    @property
    def guard(self) -> EntitlementGuard:
        return self._guard

    def _require_executor(self) -> RelayExecutor:
        if self._executor is None:
            raise RelayerNotConfigured()
        return self._executor

    async def mint(self, request: MintRequest) -> RelayResponse:
        """Run one gasless mint and return the normalized response."""
        try:
            return await self._mint(request)
        except RelayError as e:
            return self._reporter.report_failure(e)
        except Exception as e:
            logger.exception(f"Unexpected error during mint: {e}")
            return self._reporter.report_failure(
                InfrastructureError("Minting failed. Please try again.")
            )

    async def _mint(self, request: MintRequest) -> RelayResponse:
        async with self._log.operation_context(OperationType.AUTHENTICATE):
            address = self._authenticator.authenticate(
                request.wallet_address, request.signature
            )

        executor = self._require_executor()

        async with self._guard.hold(address):
            async with self._log.operation_context(OperationType.WHITELIST_CHECK) as ctx:
                whitelisted = await self._oracle.is_whitelisted(address, request.merkle_proof)
                ctx.metadata["whitelisted"] = whitelisted

            required_value = self._fees.price_for(whitelisted)
            # The paid tier mints without a proof
            proof = request.merkle_proof if whitelisted else []
            logger.info(
                f"Minting for {self._log.address(address)}: whitelisted={whitelisted} "
                f"value={self._fees.describe(required_value)}"
            )
            outcome = await executor.execute(address, proof, required_value)

        async with self._log.operation_context(
            OperationType.PERSIST_RESULT, tx_hash=outcome.transaction_reference
        ):
            return await self._reporter.report_success(address, outcome, whitelisted)

    async def relayer_status(self) -> RelayResponse:
        """Operator view of the relayer account and mint counter."""
        try:
            status = await self._require_executor().relayer_status()
            await self._guard.leases.purge_expired()
        except RelayError as e:
            return self._reporter.report_failure(e)
        except Exception as e:
            logger.exception(f"Unexpected error reading relayer status: {e}")
            return self._reporter.report_failure(
                InfrastructureError("Failed to get relayer status")
            )

        return RelayResponse(
            status_code=200,
            body={
                "success": True,
                "relayer": {
                    "address": status.relayer_address,
                    "balance": self._fees.describe(status.balance_wei),
                    "totalMinted": status.total_minted,
                    "contract": status.contract_address,
                    "network": status.network,
                    "chainId": status.chain_id,
                    "pendingTransactions": status.pending_transactions,
                    "mintsInFlight": len(self._guard.leases.active()),
                },
            },
        )

    def lookup_proof(self, address: str) -> RelayResponse:
        """Return the locally known proof for ``address``, if any."""
        try:
            normalized = normalize_address(address, "address")
        except RelayError as e:
            return self._reporter.report_failure(e)

        proof = self._oracle.lookup_proof(normalized)
        return RelayResponse(
            status_code=200,
            body={
                "address": normalized,
                "whitelisted": proof is not None,
                "merkleProof": proof or [],
            },
        )

    async def verify_chain(self, expected_chain_id: int) -> bool:
        """Check that the RPC endpoint serves the configured chain."""
        if self._rpc is None:
            return True
        try:
            chain_id = await self._rpc.get_chain_id()
        except RelayError as e:
            logger.warning(f"Could not read chain id from {self._rpc.rpc_url}: {e}")
            return False
        if chain_id != expected_chain_id:
            logger.error(
                f"RPC endpoint {self._rpc.rpc_url} serves chain {chain_id}, "
                f"expected {expected_chain_id}"
            )
            return False
        return True

    async def aclose(self) -> None:
        if self._rpc is not None:
            await self._rpc.close()


def build_service(
    settings: RelaySettings,
    store: Optional[PlayerStore] = None,
    rpc_client: Optional[ChainRPCClient] = None,
) -> MintRelayService:
    """Construct the service and all of its components from settings."""
    rpc = rpc_client or ChainRPCClient(
        settings.rpc_url,
        timeout_seconds=settings.rpc_timeout_seconds,
    )
    relay_logger = RelayLogger(mask_addresses=settings.mask_addresses)
    contract = PassContract(rpc, settings.contract_address)

    proof_table = (
        ProofTable.from_file(settings.whitelist_path)
        if settings.whitelist_path
        else ProofTable()
    )
    fee_policy = FeePolicy(settings.mint_price, settings.native_token)

    executor: Optional[RelayExecutor] = None
    if settings.relayer_configured:
        executor = RelayExecutor(
            rpc,
            contract,
            settings.relayer_private_key,
            settings.chain_id,
            gas_reserve_wei=int(Web3.to_wei(settings.gas_reserve, "ether")),
            simulator=TransactionSimulator(settings.gas_limit_buffer_percent),
            nonce_manager=NonceManager(
                stuck_after_seconds=settings.confirmation_timeout_seconds
            ),
            confirmation_timeout_seconds=settings.confirmation_timeout_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            network_name=settings.network_name,
            relay_logger=relay_logger,
        )
    else:
        logger.warning("Relayer private key not configured; mints will be refused")

    return MintRelayService(
        authenticator=SignatureAuthenticator(settings.message_template, relay_logger),
        guard=EntitlementGuard(
            contract,
            LeaseTable(ttl_seconds=settings.lease_ttl_seconds, relay_logger=relay_logger),
            relay_logger=relay_logger,
        ),
        oracle=WhitelistOracle(contract, proof_table, relay_logger),
        fee_policy=fee_policy,
        reporter=ResultReporter(
            fee_policy,
            store=store or InMemoryPlayerStore(),
            explorer_url=settings.explorer_tx_url,
            relay_logger=relay_logger,
        ),
        executor=executor,
        rpc_client=rpc,
        relay_logger=relay_logger,
    )
