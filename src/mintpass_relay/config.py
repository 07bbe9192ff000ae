"""
Configuration for the mint-pass relayer.

Provides centralized configuration for:
- RPC endpoint and chain identity
- Pass contract address and relayer key
- Mint pricing and relayer balance floor
- Gas buffer, confirmation timeout and lease expiry
- Whitelist proof table location
- Logging

All values can be overridden with environment variables prefixed
``MINTPASS_`` (e.g. ``MINTPASS_RPC_URL``) or from a ``.env`` file.
"""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import List, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONTRACT_ADDRESS = "0x09904F6f4013ce41dc2d7ac0fF09C26F3aD86e53"
DEFAULT_MESSAGE_TEMPLATE = "Mint Zero Dash Pass NFT to {address}"
DEFAULT_ALLOWED_ORIGINS = (
    "https://zerodashgame.xyz,http://localhost:3000,http://localhost:5173"
)
# RPC round trips a mint makes while it holds its lease
LEASED_RPC_CALLS = 6


class RelaySettings(BaseSettings):
    """Main relayer configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MINTPASS_",
        env_file=".env",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "staging", "prod"] = "dev"

    # Chain
    rpc_url: str = "https://evmrpc.0g.ai"
    chain_id: int = 16661
    network_name: str = "0G Mainnet"
    native_token: str = "0G"
    explorer_url: str = "https://chainscan.0g.ai"
    rpc_timeout_seconds: float = 30.0

    # Contract and relayer account
    contract_address: str = DEFAULT_CONTRACT_ADDRESS
    relayer_private_key: str = ""

    # Signed message the user must produce
    message_template: str = DEFAULT_MESSAGE_TEMPLATE

    # Pricing (native units, not wei)
    mint_price: Decimal = Decimal("5")
    gas_reserve: Decimal = Decimal("0.001")  # Worst-case gas the relayer must hold

    # Submission
    gas_limit_buffer_percent: int = Field(default=20, ge=0, le=200)
    confirmation_timeout_seconds: float = Field(default=60.0, gt=0)
    poll_interval_seconds: float = Field(default=2.0, gt=0)

    # Entitlement leases
    lease_ttl_seconds: float = Field(default=300.0, gt=0)

    # Whitelist proof table (JSON: {address: [proof...]})
    whitelist_path: str = ""

    # API
    allowed_origins: str = DEFAULT_ALLOWED_ORIGINS

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    mask_addresses: bool = False

    @field_validator("message_template")
    @classmethod
    def validate_message_template(cls, v: str) -> str:
        if "{address}" not in v:
            raise ValueError("message_template must contain an {address} placeholder")
        return v

    @field_validator("mint_price", "gas_reserve")
    @classmethod
    def validate_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("amounts must be non-negative")
        return v

    @model_validator(mode="after")
    def require_key_outside_dev(self) -> "RelaySettings":
        if self.environment != "dev" and not self.relayer_private_key:
            raise ValueError(
                "MINTPASS_RELAYER_PRIVATE_KEY must be set outside the dev environment"
            )
        return self

    @model_validator(mode="after")
    def lease_outlives_mint(self) -> "RelaySettings":
        worst_case = (
            LEASED_RPC_CALLS * self.rpc_timeout_seconds + self.confirmation_timeout_seconds
        )
        if self.lease_ttl_seconds < worst_case:
            raise ValueError(
                f"lease_ttl_seconds ({self.lease_ttl_seconds:.0f}) must cover a full mint: "
                f"{LEASED_RPC_CALLS} RPC timeouts plus the confirmation timeout "
                f"({worst_case:.0f}s)"
            )
        return self

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse the comma-separated origin list."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def relayer_configured(self) -> bool:
        return bool(self.relayer_private_key and self.contract_address)

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"


@lru_cache
def get_settings() -> RelaySettings:
    """Load settings once per process."""
    return RelaySettings()


def load_settings(**overrides) -> RelaySettings:
    """Build settings bypassing the cache (tests, scripts)."""
    return RelaySettings(**overrides)
