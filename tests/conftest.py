"""
Pytest configuration for mintpass_relay tests.
"""
from __future__ import annotations

import os
from decimal import Decimal
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from mintpass_relay.auth import SignatureAuthenticator
from mintpass_relay.config import DEFAULT_CONTRACT_ADDRESS, DEFAULT_MESSAGE_TEMPLATE
from mintpass_relay.contract import TRANSFER_TOPIC, encode_mint
from mintpass_relay.entitlement import EntitlementGuard, LeaseTable
from mintpass_relay.executor import RelayExecutor
from mintpass_relay.fees import FeePolicy
from mintpass_relay.reporter import ResultReporter
from mintpass_relay.service import MintRelayService
from mintpass_relay.store import InMemoryPlayerStore
from mintpass_relay.whitelist import ProofTable, WhitelistOracle

# Keep settings deterministic regardless of the developer's shell
os.environ.setdefault("MINTPASS_ENVIRONMENT", "dev")

USER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32
RELAYER_KEY = "0x" + "33" * 32

TX_HASH = "0x" + "ab" * 32
ONE_NATIVE = 10**18
GAS_RESERVE_WEI = 10**15  # 0.001
GAS_PRICE = 10**9
GAS_USED = 100_000


def sign_mint_message(private_key: str, address: str, template: str = DEFAULT_MESSAGE_TEMPLATE) -> str:
    """personal_sign the mint message for ``address``."""
    message = encode_defunct(text=template.format(address=address))
    signed = Account.sign_message(message, private_key=private_key)
    return Web3.to_hex(signed.signature)


def transfer_log(token_id: int, to_address: str, contract: str = DEFAULT_CONTRACT_ADDRESS) -> Dict[str, Any]:
    return {
        "address": contract.lower(),
        "topics": [
            TRANSFER_TOPIC,
            "0x" + "0" * 64,
            "0x" + "0" * 24 + to_address.lower()[2:],
            "0x" + format(token_id, "064x"),
        ],
        "data": "0x",
    }


def make_receipt(
    status: int = 1,
    token_id: Optional[int] = 42,
    to_address: str = "0x" + "00" * 20,
    block_number: int = 16,
) -> Dict[str, Any]:
    logs: List[Dict[str, Any]] = []
    if token_id is not None:
        logs.append(transfer_log(token_id, to_address))
    return {
        "transactionHash": TX_HASH,
        "blockNumber": hex(block_number),
        "status": hex(status),
        "gasUsed": hex(GAS_USED),
        "effectiveGasPrice": hex(GAS_PRICE),
        "logs": logs,
    }


@pytest.fixture
def user_account():
    return Account.from_key(USER_KEY)


@pytest.fixture
def other_account():
    return Account.from_key(OTHER_KEY)


@pytest.fixture
def relayer_account():
    return Account.from_key(RELAYER_KEY)


@pytest.fixture
def sample_tx_hash():
    """Valid transaction hash for testing."""
    return TX_HASH


@pytest.fixture
def mock_rpc():
    """Chain RPC client with a funded relayer and a successful mint."""
    rpc = AsyncMock()
    rpc.get_balance.return_value = 100 * ONE_NATIVE
    rpc.estimate_gas.return_value = GAS_USED
    rpc.get_gas_price.return_value = GAS_PRICE
    rpc.get_nonce.return_value = 5
    rpc.send_raw_transaction.return_value = TX_HASH
    rpc.get_transaction_receipt.return_value = make_receipt()
    return rpc


@pytest.fixture
def mock_contract():
    """Pass contract with an unminted wallet and no whitelist."""
    contract = Mock()
    contract.address = Web3.to_checksum_address(DEFAULT_CONTRACT_ADDRESS)
    contract.mint_calldata = Mock(side_effect=encode_mint)
    contract.has_minted = AsyncMock(return_value=False)
    contract.is_whitelisted = AsyncMock(return_value=False)
    contract.total_minted = AsyncMock(return_value=7)
    return contract


@pytest.fixture
def fee_policy():
    return FeePolicy(Decimal("5"), "0G")


@pytest.fixture
def player_store():
    return InMemoryPlayerStore()


@pytest.fixture
def executor(mock_rpc, mock_contract):
    return RelayExecutor(
        mock_rpc,
        mock_contract,
        RELAYER_KEY,
        16661,
        gas_reserve_wei=GAS_RESERVE_WEI,
        confirmation_timeout_seconds=2.0,
        poll_interval_seconds=0.01,
        network_name="0G Mainnet",
    )


@pytest.fixture
def make_service(mock_contract, fee_policy, player_store):
    """Factory for a service wired to the mock contract."""

    def _make(executor=None, proof_table: Optional[ProofTable] = None, lease_ttl: float = 300.0):
        return MintRelayService(
            authenticator=SignatureAuthenticator(),
            guard=EntitlementGuard(mock_contract, LeaseTable(ttl_seconds=lease_ttl)),
            oracle=WhitelistOracle(mock_contract, proof_table),
            fee_policy=fee_policy,
            reporter=ResultReporter(
                fee_policy,
                store=player_store,
                explorer_url=lambda h: f"https://chainscan.0g.ai/tx/{h}",
            ),
            executor=executor,
        )

    return _make
