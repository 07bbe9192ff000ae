"""
Off-chain wallet authentication.

The caller proves control of a wallet by signing a fixed message with
``personal_sign`` (EIP-191). The message depends only on the claimed address,
so the signature cannot be replayed to credit a different wallet.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from .config import DEFAULT_MESSAGE_TEMPLATE
from .errors import AddressMismatch, AuthenticationError, InputError
from .logging_utils import RelayLogger

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
SIGNATURE_PATTERN = re.compile(r"^0x[a-fA-F0-9]{130}$")


def normalize_address(value: object, field_name: str = "walletAddress") -> str:
    """Validate a hex wallet address and return it lower-cased."""
    if not isinstance(value, str) or not value.strip():
        raise InputError("Wallet address required")
    address = value.strip()
    if not ADDRESS_PATTERN.fullmatch(address):
        raise InputError(f"{field_name} must be a valid hex wallet address")
    return address.lower()


class SignatureAuthenticator:
    """Recovers the signer of the mint message and checks it against the claim."""

    def __init__(
        self,
        message_template: str = DEFAULT_MESSAGE_TEMPLATE,
        relay_logger: Optional[RelayLogger] = None,
    ):
        self._template = message_template
        self._log = relay_logger or RelayLogger()

    def message_for(self, address: str) -> str:
        """The exact text the wallet must sign."""
        return self._template.format(address=address)

    def recover_signer(self, address: str, signature: str) -> str:
        """Recover the address that signed the mint message for ``address``.

        Raises:
            AuthenticationError: If the signature is malformed or unrecoverable
        """
        if not isinstance(signature, str) or not signature.strip():
            raise InputError("Signature required")
        sig = signature.strip()
        if not sig.startswith("0x"):
            sig = f"0x{sig}"
        if not SIGNATURE_PATTERN.fullmatch(sig):
            raise AuthenticationError("Invalid signature format")

        message = encode_defunct(text=self.message_for(address))
        try:
            return Account.recover_message(message, signature=sig)
        except Exception as e:
            logger.info(f"Signature recovery failed: {e}")
            raise AuthenticationError("Invalid signature format") from e

    def authenticate(self, address: str, signature: str) -> str:
        """Verify that ``signature`` was produced by ``address``.

        Returns:
            The normalized (lower-case) address

        Raises:
            InputError: Missing address or signature
            AuthenticationError: Malformed signature
            AddressMismatch: Signature recovered to a different wallet
        """
        normalized = normalize_address(address)
        recovered = self.recover_signer(address.strip(), signature)
        if recovered.lower() != normalized:
            logger.warning(
                f"Signature mismatch: claimed={self._log.address(normalized)} "
                f"recovered={self._log.address(recovered.lower())}"
            )
            raise AddressMismatch(claimed=normalized, recovered=recovered.lower())
        return normalized
