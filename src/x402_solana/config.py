"""
x402 Solana Configuration
"""

import logging
from functools import lru_cache

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3022)
    debug: bool = Field(default=False)
    public_base_url: str = Field(default="", description="Origin used to build resource URLs behind a proxy")

    # Solana Network
    solana_network: str = Field(default="solana-devnet")
    solana_rpc_url: str = Field(default="", description="Overrides the public endpoint for solana_network")

    # USDC Token (Devnet)
    asset_mint: str = Field(default="4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU")
    asset_decimals: int = Field(default=6)

    # Server signer (fee payer and settlement delegate)
    wallet_keypair: str = Field(default="", description="JSON byte array or base58 secret key")
    pay_to_address: str = Field(default="")

    # Settings
    default_timeout_seconds: int = Field(default=60)
    max_compute_unit_price: int = Field(default=5)
    compute_unit_limit: int = Field(default=200_000)
    settle_payment: bool = Field(default=True)
    nonce_cache_enabled: bool = Field(default=True)

    # Logging
    log_level: str = Field(default="INFO")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str) -> None:
    """Filter structlog output below the configured level."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(numeric))
