"""Gasless mint-pass relayer.

Users sign a message with their wallet; a funded relayer account submits the
mint on their behalf and pays the network fee.
"""
from __future__ import annotations

from .auth import SignatureAuthenticator, normalize_address
from .config import RelaySettings, get_settings, load_settings
from .entitlement import EntitlementGuard, Lease, LeaseTable
from .errors import (
    AddressMismatch,
    AlreadyMinted,
    AuthenticationError,
    ConcurrentMintInProgress,
    ConfirmationTimeout,
    InfrastructureError,
    InputError,
    RelayError,
    RelayerNotConfigured,
    RelayerUnderfunded,
    RPCError,
    SimulationFailed,
    TransactionReverted,
)
from .executor import RelayExecutor, RelayOutcome, RelayerStatus
from .fees import FeePolicy
from .reporter import RelayResponse, ResultReporter
from .service import MintRelayService, MintRequest, build_service
from .store import InMemoryPlayerStore, PlayerEntitlement, PlayerStore
from .whitelist import ProofTable, WhitelistOracle

__version__ = "0.1.0"

__all__ = [
    "AddressMismatch",
    "AlreadyMinted",
    "AuthenticationError",
    "ConcurrentMintInProgress",
    "ConfirmationTimeout",
    "EntitlementGuard",
    "FeePolicy",
    "InMemoryPlayerStore",
    "InfrastructureError",
    "InputError",
    "Lease",
    "LeaseTable",
    "MintRelayService",
    "MintRequest",
    "PlayerEntitlement",
    "PlayerStore",
    "ProofTable",
    "RPCError",
    "RelayError",
    "RelayExecutor",
    "RelayOutcome",
    "RelayResponse",
    "RelaySettings",
    "RelayerNotConfigured",
    "RelayerStatus",
    "RelayerUnderfunded",
    "ResultReporter",
    "SignatureAuthenticator",
    "SimulationFailed",
    "TransactionReverted",
    "WhitelistOracle",
    "build_service",
    "get_settings",
    "load_settings",
    "normalize_address",
]
