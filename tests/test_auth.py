"""Tests for wallet signature authentication."""
from __future__ import annotations

import logging

import pytest

from conftest import OTHER_KEY, USER_KEY, sign_mint_message
from mintpass_relay.auth import SignatureAuthenticator, normalize_address
from mintpass_relay.errors import AddressMismatch, AuthenticationError, InputError
from mintpass_relay.logging_utils import RelayLogger, mask_address


@pytest.fixture
def authenticator():
    return SignatureAuthenticator()


class TestNormalizeAddress:
    """Tests for address validation."""

    def test_lowercases_valid_address(self, user_account):
        """Should return the lower-case form."""
        assert normalize_address(user_account.address) == user_account.address.lower()

    def test_strips_whitespace(self, user_account):
        assert normalize_address(f"  {user_account.address} ") == user_account.address.lower()

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing_address(self, value):
        """Should reject missing address as input error."""
        with pytest.raises(InputError, match="Wallet address required"):
            normalize_address(value)

    @pytest.mark.parametrize("value", ["0x123", "1234567890123456789012345678901234567890", "0x" + "g" * 40])
    def test_malformed_address(self, value):
        with pytest.raises(InputError):
            normalize_address(value)


class TestSignatureAuthenticator:
    """Tests for SignatureAuthenticator."""

    def test_message_includes_address(self, authenticator):
        assert authenticator.message_for("0xabc") == "Mint Zero Dash Pass NFT to 0xabc"

    def test_valid_signature(self, authenticator, user_account):
        """Should return the normalized address when the signer matches."""
        address = user_account.address
        signature = sign_mint_message(USER_KEY, address)

        assert authenticator.authenticate(address, signature) == address.lower()

    def test_lowercase_claim_signed_lowercase(self, authenticator, user_account):
        address = user_account.address.lower()
        signature = sign_mint_message(USER_KEY, address)

        assert authenticator.authenticate(address, signature) == address

    def test_signature_without_prefix(self, authenticator, user_account):
        """Should accept a signature missing its 0x prefix."""
        address = user_account.address
        signature = sign_mint_message(USER_KEY, address)[2:]

        assert authenticator.authenticate(address, signature) == address.lower()

    def test_signed_by_other_wallet(self, authenticator, user_account, other_account):
        """Should reject a signature produced by a different key."""
        address = user_account.address
        signature = sign_mint_message(OTHER_KEY, address)

        with pytest.raises(AddressMismatch) as exc_info:
            authenticator.authenticate(address, signature)

        assert exc_info.value.claimed == address.lower()
        assert exc_info.value.recovered == other_account.address.lower()
        assert exc_info.value.status_code == 400

    def test_signature_for_other_address_cannot_be_replayed(
        self, authenticator, user_account, other_account
    ):
        """A signature over another wallet's message recovers to a different signer."""
        signature = sign_mint_message(OTHER_KEY, other_account.address)

        with pytest.raises(AddressMismatch):
            authenticator.authenticate(user_account.address, signature)

    @pytest.mark.parametrize("signature", [None, "", "  "])
    def test_missing_signature(self, authenticator, user_account, signature):
        with pytest.raises(InputError, match="Signature required"):
            authenticator.authenticate(user_account.address, signature)

    @pytest.mark.parametrize("signature", ["0x1234", "0x" + "zz" * 65, "0x" + "ab" * 64])
    def test_malformed_signature(self, authenticator, user_account, signature):
        with pytest.raises(AuthenticationError, match="Invalid signature format"):
            authenticator.authenticate(user_account.address, signature)

    def test_unrecoverable_signature(self, authenticator, user_account):
        """Well-formed but invalid signature bytes are an authentication error."""
        with pytest.raises(AuthenticationError):
            authenticator.authenticate(user_account.address, "0x" + "ff" * 65)

    def test_custom_template(self, user_account):
        template = "Claim pass for {address}"
        authenticator = SignatureAuthenticator(template)
        signature = sign_mint_message(USER_KEY, user_account.address, template)

        assert authenticator.authenticate(user_account.address, signature) == user_account.address.lower()


class TestAuthenticationLogging:
    def test_mismatch_log_masks_addresses(self, caplog, user_account, other_account):
        """Should never write full wallet addresses when masking is on."""
        authenticator = SignatureAuthenticator(relay_logger=RelayLogger(mask_addresses=True))
        signature = sign_mint_message(OTHER_KEY, user_account.address)

        with caplog.at_level(logging.DEBUG, logger="mintpass_relay"):
            with pytest.raises(AddressMismatch):
                authenticator.authenticate(user_account.address, signature)

        assert "Signature mismatch" in caplog.text
        assert user_account.address.lower() not in caplog.text
        assert other_account.address.lower() not in caplog.text
        assert mask_address(user_account.address.lower()) in caplog.text

    def test_mismatch_log_unmasked_by_default(self, caplog, user_account):
        signature = sign_mint_message(OTHER_KEY, user_account.address)

        with caplog.at_level(logging.WARNING, logger="mintpass_relay"):
            with pytest.raises(AddressMismatch):
                SignatureAuthenticator().authenticate(user_account.address, signature)

        assert user_account.address.lower() in caplog.text
