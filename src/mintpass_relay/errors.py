"""
Error taxonomy for the relay pipeline.

Every error carries an ``error_kind`` (stable identifier returned to callers)
and an HTTP-style ``status_code``:

- client input and entitlement conflicts -> 400
- relayer and infrastructure faults -> 500
- confirmation timeout -> 504 (outcome unknown, not failed)
"""
from __future__ import annotations

from typing import Any, Optional


class RelayError(Exception):
    """Base class for all relay pipeline errors."""

    error_kind = "RelayError"
    status_code = 500
    indeterminate = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InputError(RelayError):
    """Missing or malformed request fields."""

    error_kind = "InputError"
    status_code = 400


class AuthenticationError(RelayError):
    """Signature is malformed or cannot be recovered."""

    error_kind = "AuthenticationError"
    status_code = 400


class AddressMismatch(AuthenticationError):
    """Recovered signer differs from the claimed wallet."""

    error_kind = "AddressMismatch"

    def __init__(self, claimed: str, recovered: str):
        self.claimed = claimed
        self.recovered = recovered
        super().__init__("Signature verification failed. Sign with correct wallet.")


class AlreadyMinted(RelayError):
    """The ledger reports the address has already minted."""

    error_kind = "AlreadyMinted"
    status_code = 400

    def __init__(self, address: str):
        self.address = address
        super().__init__("You already minted your NFT Pass")


class ConcurrentMintInProgress(RelayError):
    """Another request for the same wallet holds the lease."""

    error_kind = "ConcurrentMintInProgress"
    status_code = 400

    def __init__(self, address: str):
        self.address = address
        super().__init__(
            "A mint for this wallet is already in progress. Please wait for it to finish."
        )


class SimulationFailed(RelayError):
    """The contract call would revert; nothing was submitted."""

    error_kind = "SimulationFailed"
    status_code = 400

    def __init__(self, message: str, revert_reason: Optional[str] = None):
        self.revert_reason = revert_reason
        super().__init__(message)


class RelayerUnderfunded(RelayError):
    """Relayer balance is below the safety floor."""

    error_kind = "RelayerUnderfunded"
    status_code = 500

    def __init__(self, balance_wei: Optional[int], required_wei: int):
        self.balance_wei = balance_wei
        self.required_wei = required_wei
        super().__init__("Relayer out of funds. Contact admin.")


class RelayerNotConfigured(RelayError):
    """No relayer key or contract address configured."""

    error_kind = "RelayerNotConfigured"
    status_code = 500

    def __init__(self, message: str = "Relayer not initialized. Contact admin."):
        super().__init__(message)


class ConfirmationTimeout(RelayError):
    """The transaction was broadcast but not seen in a block in time.

    The transaction may still be included later. Callers must re-check the
    entitlement instead of resubmitting.
    """

    error_kind = "ConfirmationTimeout"
    status_code = 504
    indeterminate = True

    def __init__(self, tx_hash: str, timeout_seconds: float):
        self.tx_hash = tx_hash
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {timeout_seconds:.0f}s. "
            "It may still complete; check your pass status before retrying."
        )


class SubmissionIndeterminate(RelayError):
    """The broadcast call failed in transport; the node may have accepted it.

    The nonce stays reserved and the transaction is tracked by its hash.
    """

    error_kind = "SubmissionIndeterminate"
    status_code = 504
    indeterminate = True

    def __init__(self, tx_hash: str, reason: str):
        self.tx_hash = tx_hash
        self.reason = reason
        super().__init__(
            f"Transaction {tx_hash} may have been submitted ({reason}). "
            "Check your pass status before retrying."
        )


class TransactionReverted(RelayError):
    """The transaction was mined with status 0."""

    error_kind = "TransactionReverted"
    status_code = 500

    def __init__(self, tx_hash: str, block_number: Optional[int] = None):
        self.tx_hash = tx_hash
        self.block_number = block_number
        super().__init__(f"Transaction {tx_hash} reverted on-chain")


class InfrastructureError(RelayError):
    """RPC unreachable, malformed responses, or any unexpected fault."""

    error_kind = "InfrastructureError"
    status_code = 500


class RPCError(InfrastructureError):
    """JSON-RPC error object returned by the node."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(message)
