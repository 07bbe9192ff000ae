"""
Tests for the relayer transaction executor.

Tests cover:
- Balance guard before any simulation
- Simulation failures before submission
- Signed submission and nonce ordering
- Confirmation timeout, revert and token id extraction
"""
from __future__ import annotations

import pytest
from eth_account import Account
from web3 import Web3

from conftest import (
    GAS_PRICE,
    GAS_RESERVE_WEI,
    GAS_USED,
    ONE_NATIVE,
    RELAYER_KEY,
    TX_HASH,
    make_receipt,
)
from mintpass_relay.errors import (
    ConfirmationTimeout,
    InfrastructureError,
    RelayerUnderfunded,
    RPCError,
    SimulationFailed,
    SubmissionIndeterminate,
    TransactionReverted,
)
from mintpass_relay.executor import RelayExecutor

USER = "0x1234567890123456789012345678901234567890"
PRICE = 5 * ONE_NATIVE


class TestBalanceGuard:
    """Tests for the relayer balance floor."""

    @pytest.mark.asyncio
    async def test_underfunded_stops_before_simulation(self, executor, mock_rpc):
        mock_rpc.get_balance.return_value = ONE_NATIVE

        with pytest.raises(RelayerUnderfunded) as exc_info:
            await executor.execute(USER, [], PRICE)

        assert exc_info.value.status_code == 500
        assert exc_info.value.required_wei == PRICE + GAS_RESERVE_WEI
        mock_rpc.estimate_gas.assert_not_awaited()
        mock_rpc.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_balance_equal_to_floor_is_underfunded(self, executor, mock_rpc):
        """The balance must strictly exceed value plus gas reserve."""
        mock_rpc.get_balance.return_value = PRICE + GAS_RESERVE_WEI

        with pytest.raises(RelayerUnderfunded):
            await executor.check_balance(PRICE)

    @pytest.mark.asyncio
    async def test_free_mint_only_needs_gas_reserve(self, executor, mock_rpc):
        mock_rpc.get_balance.return_value = GAS_RESERVE_WEI + 1

        assert await executor.check_balance(0) == GAS_RESERVE_WEI + 1


class TestExecute:
    """Tests for RelayExecutor.execute."""

    @pytest.mark.asyncio
    async def test_paid_mint(self, executor, mock_rpc, mock_contract):
        outcome = await executor.execute(USER, [], PRICE)

        assert outcome.success is True
        assert outcome.transaction_reference == TX_HASH
        assert outcome.confirmed_block == 16
        assert outcome.minted_token_id == 42
        assert outcome.gas_used == GAS_USED
        assert outcome.cost_paid_by_relayer == GAS_USED * GAS_PRICE
        assert outcome.value_paid == PRICE

        tx_params = mock_rpc.estimate_gas.await_args.args[0]
        assert tx_params["value"] == hex(PRICE)
        assert tx_params["to"] == mock_contract.address
        assert tx_params["from"] == executor.relayer_address

    @pytest.mark.asyncio
    async def test_signed_transaction(self, executor, mock_rpc, mock_contract):
        """The broadcast payload is signed by the relayer with the buffered gas limit."""
        await executor.execute(USER, [], PRICE)

        raw = mock_rpc.send_raw_transaction.await_args.args[0]
        assert raw.startswith("0x")
        assert Account.recover_transaction(raw) == Account.from_key(RELAYER_KEY).address

    @pytest.mark.asyncio
    async def test_simulation_failure_not_submitted(self, executor, mock_rpc):
        mock_rpc.estimate_gas.side_effect = RPCError("execution reverted: Already minted")

        with pytest.raises(SimulationFailed):
            await executor.execute(USER, [], PRICE)

        mock_rpc.send_raw_transaction.assert_not_awaited()
        mock_rpc.get_nonce.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_simulation_out_of_funds_is_underfunded(self, executor, mock_rpc):
        """A dry run the node refuses for lack of funds is the relayer's problem."""
        mock_rpc.estimate_gas.side_effect = RPCError(
            "insufficient funds for gas * price + value"
        )

        with pytest.raises(RelayerUnderfunded) as exc_info:
            await executor.execute(USER, [], PRICE)

        assert exc_info.value.status_code == 500
        assert exc_info.value.balance_wei is None
        assert exc_info.value.required_wei == PRICE + GAS_RESERVE_WEI
        mock_rpc.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self, mock_rpc, mock_contract):
        """No receipt in time is indeterminate, not a failure."""
        mock_rpc.get_transaction_receipt.return_value = None
        executor = RelayExecutor(
            mock_rpc,
            mock_contract,
            RELAYER_KEY,
            16661,
            gas_reserve_wei=GAS_RESERVE_WEI,
            confirmation_timeout_seconds=0.05,
            poll_interval_seconds=0.01,
        )

        with pytest.raises(ConfirmationTimeout) as exc_info:
            await executor.execute(USER, [], PRICE)

        assert exc_info.value.tx_hash == TX_HASH
        assert exc_info.value.indeterminate is True
        assert exc_info.value.status_code == 504
        # Still tracked as pending
        assert executor.nonce_manager.get_pending_count(executor.relayer_address) == 1

    @pytest.mark.asyncio
    async def test_reverted_on_chain(self, executor, mock_rpc):
        mock_rpc.get_transaction_receipt.return_value = make_receipt(status=0, token_id=None)

        with pytest.raises(TransactionReverted) as exc_info:
            await executor.execute(USER, [], PRICE)

        assert exc_info.value.tx_hash == TX_HASH
        assert exc_info.value.block_number == 16

    @pytest.mark.asyncio
    async def test_missing_transfer_log(self, executor, mock_rpc):
        """Success without a token id when the Transfer log is absent."""
        mock_rpc.get_transaction_receipt.return_value = make_receipt(token_id=None)

        outcome = await executor.execute(USER, [], PRICE)

        assert outcome.success is True
        assert outcome.minted_token_id is None

    @pytest.mark.asyncio
    async def test_pending_receipt_then_mined(self, executor, mock_rpc):
        mock_rpc.get_transaction_receipt.side_effect = [
            None,
            InfrastructureError("RPC endpoint unreachable"),
            make_receipt(token_id=9),
        ]

        outcome = await executor.execute(USER, [], PRICE)

        assert outcome.minted_token_id == 9
        assert mock_rpc.get_transaction_receipt.await_count == 3
        assert executor.nonce_manager.get_pending_count(executor.relayer_address) == 0

    @pytest.mark.asyncio
    async def test_effective_gas_price_fallback(self, executor, mock_rpc):
        receipt = make_receipt()
        del receipt["effectiveGasPrice"]
        mock_rpc.get_transaction_receipt.return_value = receipt
        mock_rpc.get_gas_price.return_value = 3 * GAS_PRICE

        outcome = await executor.execute(USER, [], PRICE)

        assert outcome.cost_paid_by_relayer == GAS_USED * 3 * GAS_PRICE


class TestSubmit:
    """Tests for nonce handling around broadcast."""

    @pytest.mark.asyncio
    async def test_consecutive_nonces(self, executor, mock_rpc):
        mock_rpc.send_raw_transaction.side_effect = ["0x" + "01" * 32, "0x" + "02" * 32]

        first = await executor.submit([], PRICE, 120_000)
        second = await executor.submit([], PRICE, 120_000)

        assert (first.nonce, second.nonce) == (5, 6)
        assert first.gas_limit == 120_000
        assert first.gas_price == GAS_PRICE

    @pytest.mark.asyncio
    async def test_broadcast_failure_releases_nonce(self, executor, mock_rpc):
        mock_rpc.send_raw_transaction.side_effect = [
            RPCError("nonce too low"),
            TX_HASH,
        ]

        with pytest.raises(InfrastructureError, match="broadcast failed"):
            await executor.submit([], PRICE, 120_000)

        retried = await executor.submit([], PRICE, 120_000)
        assert retried.nonce == 5
        assert mock_rpc.get_nonce.await_count == 2

    @pytest.mark.asyncio
    async def test_unanswered_broadcast_keeps_nonce(self, executor, mock_rpc):
        """A transport fault may hide an accepted transaction: track it, never reuse."""
        mock_rpc.send_raw_transaction.side_effect = [
            InfrastructureError("RPC endpoint unreachable: read timeout"),
            TX_HASH,
        ]

        with pytest.raises(SubmissionIndeterminate) as exc_info:
            await executor.submit([], PRICE, 120_000)

        raw = mock_rpc.send_raw_transaction.await_args_list[0].args[0]
        expected_hash = Web3.to_hex(Web3.keccak(hexstr=raw))
        assert exc_info.value.tx_hash == expected_hash
        assert exc_info.value.indeterminate is True
        assert exc_info.value.status_code == 504
        pending = executor.nonce_manager.get_all_pending(executor.relayer_address)
        assert [(p.tx_hash, p.nonce) for p in pending] == [(expected_hash, 5)]

        following = await executor.submit([], PRICE, 120_000)
        assert following.nonce == 6
        assert mock_rpc.get_nonce.await_count == 1


class TestRelayerStatus:
    @pytest.mark.asyncio
    async def test_status(self, executor, mock_rpc, mock_contract):
        status = await executor.relayer_status()

        assert status.pending_transactions == 0

        assert status.relayer_address == Account.from_key(RELAYER_KEY).address
        assert status.balance_wei == 100 * ONE_NATIVE
        assert status.total_minted == 7
        assert status.contract_address == mock_contract.address
        assert status.chain_id == 16661
        assert status.network == "0G Mainnet"

    def test_relayer_address_checksummed(self, executor):
        assert executor.relayer_address == Web3.to_checksum_address(executor.relayer_address)
