# src/xbridge/config/settings.py
"""
Settings - Pydantic-based Configuration Management

Provides centralized configuration management using Pydantic Settings.
Supports environment variables and a .env file with validation.

Files that USE this module:
- xbridge.app (builds the store, chain clients, oracle and engine from settings)

Files that this module USES:
- xbridge.shared.validators (validation functions for settings)
"""

from __future__ import annotations  # Enable postponed evaluation of annotations

from pathlib import Path  # Object-oriented filesystem paths
from typing import Optional  # Type hints for optional values

from pydantic import Field, field_validator  # Data validation and field configuration
from pydantic_settings import BaseSettings, SettingsConfigDict  # Settings management with Pydantic

from xbridge.shared.validators import (
    validate_ed25519_seed,  # Validate base64 Octra signing seed
    validate_evm_address,  # Validate Sepolia escrow address
    validate_evm_private_key,  # Validate Sepolia hot wallet key
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # --- Octra chain ---
    octra_rpc_url: str = Field(default="https://octra.network", alias="OCTRA_RPC_URL")
    octra_escrow_address: str = Field(default="", alias="OCTRA_ESCROW_ADDRESS")
    octra_private_key: str = Field(default="", alias="OCTRA_PRIVATE_KEY")

    # --- Sepolia chain ---
    sepolia_rpc_url: str = Field(default="https://rpc.sepolia.org", alias="SEPOLIA_RPC_URL")
    sepolia_escrow_address: str = Field(default="", alias="SEPOLIA_ESCROW_ADDRESS")
    sepolia_private_key: str = Field(default="", alias="SEPOLIA_PRIVATE_KEY")

    # --- HTTP Settings ---
    http_timeout_seconds: int = Field(default=10, alias="HTTP_TIMEOUT_SECONDS", ge=1, le=60)
    balance_cache_seconds: int = Field(default=15, alias="BALANCE_CACHE_SECONDS", ge=0, le=600)

    # --- Settlement ---
    fee_bps: int = Field(default=50, alias="FEE_BPS", ge=0, le=10_000)
    liquidity_buffer: float = Field(default=1.1, alias="LIQUIDITY_BUFFER", gt=1.0)
    sweep_interval_seconds: int = Field(default=30, alias="SWEEP_INTERVAL_SECONDS", ge=1, le=3600)
    max_dispatch_attempts: int = Field(default=5, alias="MAX_DISPATCH_ATTEMPTS", ge=1, le=100)
    confirmation_timeout_seconds: float = Field(default=120.0, alias="CONFIRMATION_TIMEOUT_SECONDS", gt=0)
    confirmation_poll_seconds: float = Field(default=5.0, alias="CONFIRMATION_POLL_SECONDS", gt=0)
    amount_tolerance: float = Field(default=1e-6, alias="AMOUNT_TOLERANCE", ge=0.0)
    envelope_allow_legacy: bool = Field(default=True, alias="ENVELOPE_ALLOW_LEGACY")

    # --- Oracle ---
    oracle_initial_rate: float = Field(default=0.001, alias="ORACLE_INITIAL_RATE", gt=0.0)
    oracle_virtual_oct_reserve: float = Field(default=1_000_000.0, alias="ORACLE_VIRTUAL_OCT_RESERVE", gt=0.0)
    oracle_ema_alpha: float = Field(default=0.1, alias="ORACLE_EMA_ALPHA", gt=0.0, le=1.0)
    oracle_twap_window_minutes: float = Field(default=15.0, alias="ORACLE_TWAP_WINDOW_MINUTES", gt=0.0)
    oracle_max_price_change_pct: float = Field(default=10.0, alias="ORACLE_MAX_PRICE_CHANGE_PCT", gt=0.0)
    oracle_min_rate_pct: float = Field(default=50.0, alias="ORACLE_MIN_RATE_PCT", gt=0.0)
    oracle_max_rate_pct: float = Field(default=200.0, alias="ORACLE_MAX_RATE_PCT", gt=0.0)
    oracle_breaker_cooldown_seconds: int = Field(default=300, alias="ORACLE_BREAKER_COOLDOWN_SECONDS", ge=1)

    # --- ETH/USD reference price ---
    # Empty CHAINLINK_RPC_URL reads the Sepolia aggregator over SEPOLIA_RPC_URL;
    # empty CHAINLINK_ETH_USD_FEED picks the aggregator matching the RPC
    chainlink_rpc_url: str = Field(default="", alias="CHAINLINK_RPC_URL")
    chainlink_eth_usd_feed: str = Field(default="", alias="CHAINLINK_ETH_USD_FEED")
    coingecko_url: str = Field(
        default="https://api.coingecko.com/api/v3/simple/price?ids=ethereum&vs_currencies=usd",
        alias="COINGECKO_URL",
    )
    coinbase_url: str = Field(default="https://api.coinbase.com/v2/prices/ETH-USD/spot", alias="COINBASE_URL")
    eth_usd_refresh_seconds: int = Field(default=60, alias="ETH_USD_REFRESH_SECONDS", ge=10, le=3600)
    eth_usd_cache_seconds: int = Field(default=30, alias="ETH_USD_CACHE_SECONDS", ge=0, le=3600)

    # --- Swap limits (quotes) ---
    min_swap_oct: float = Field(default=1.0, alias="MIN_SWAP_OCT", ge=0.0)
    max_swap_oct: float = Field(default=100_000.0, alias="MAX_SWAP_OCT", gt=0.0)
    min_swap_eth: float = Field(default=0.0001, alias="MIN_SWAP_ETH", ge=0.0)
    max_swap_eth: float = Field(default=10.0, alias="MAX_SWAP_ETH", gt=0.0)
    quote_expiry_seconds: int = Field(default=30, alias="QUOTE_EXPIRY_SECONDS", ge=1)

    # --- Persistence ---
    database_path: Path = Field(default=Path("./data/intents.db"), alias="DATABASE_PATH")

    # --- Operator alerts (Telegram, optional) ---
    alert_bot_token: str = Field(default="", alias="ALERT_BOT_TOKEN")
    alert_chat_id: str = Field(default="", alias="ALERT_CHAT_ID")

    # --- Logging (for server deployment) ---
    log_file: Optional[str] = Field(default=None, alias="LOG_FILE")
    log_dir: Optional[str] = Field(default=None, alias="LOG_DIR")
    log_stdout: bool = Field(default=True, alias="XBRIDGE_LOG_STDOUT")
    log_max_bytes: int = Field(default=10 * 1024 * 1024, alias="LOG_MAX_BYTES")  # 10MB
    log_backup_count: int = Field(default=5, alias="LOG_BACKUP_COUNT")

    @property
    def oracle_min_rate(self) -> float:
        """Lower price bound in ETH per OCT."""
        return self.oracle_initial_rate * self.oracle_min_rate_pct / 100

    @property
    def oracle_max_rate(self) -> float:
        """Upper price bound in ETH per OCT."""
        return self.oracle_initial_rate * self.oracle_max_rate_pct / 100

    @property
    def eth_usd_rpc_url(self) -> str:
        """RPC endpoint for the Chainlink ETH/USD aggregator call."""
        return self.chainlink_rpc_url or self.sepolia_rpc_url

    @property
    def alerts_enabled(self) -> bool:
        return bool(self.alert_bot_token and self.alert_chat_id)

    @field_validator("octra_private_key")
    @classmethod
    def validate_octra_key(cls, v: str) -> str:
        """Validate Octra seed format (empty disables OCT payouts)."""
        if v and not validate_ed25519_seed(v):
            raise ValueError("OCTRA_PRIVATE_KEY must be a base64-encoded 32-byte seed")
        return v

    @field_validator("sepolia_private_key")
    @classmethod
    def validate_sepolia_key(cls, v: str) -> str:
        """Validate Sepolia key format (empty disables ETH payouts)."""
        if v and not validate_evm_private_key(v):
            raise ValueError("SEPOLIA_PRIVATE_KEY must be 32 bytes of hex")
        return v

    @field_validator("sepolia_escrow_address")
    @classmethod
    def validate_sepolia_escrow(cls, v: str) -> str:
        """Validate Sepolia escrow address format."""
        if v and not validate_evm_address(v):
            raise ValueError("Invalid SEPOLIA_ESCROW_ADDRESS format")
        return v

    @field_validator("chainlink_eth_usd_feed")
    @classmethod
    def validate_chainlink_feed(cls, v: str) -> str:
        """Validate the aggregator address (empty picks the network default)."""
        if v and not validate_evm_address(v):
            raise ValueError("Invalid CHAINLINK_ETH_USD_FEED format")
        return v

    @field_validator("oracle_max_rate_pct")
    @classmethod
    def validate_rate_band(cls, v: float, info) -> float:
        """Upper bound must sit above the lower bound."""
        lower = info.data.get("oracle_min_rate_pct")
        if lower is not None and v <= lower:
            raise ValueError("ORACLE_MAX_RATE_PCT must be greater than ORACLE_MIN_RATE_PCT")
        return v

    def model_post_init(self, __context) -> None:
        """Post-initialization: ensure the data directory exists."""
        if str(self.database_path) != ":memory:":
            self.database_path.parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()


# ============================================================================
# Deployment Instructions
# ============================================================================
#
# 1. Run the settlement service in the background:
#    nohup xbridge > xbridge.log 2>&1 &
#
# 2. Monitor logs in real-time:
#    tail -f xbridge.log
#
# 3. Stop the service (SIGTERM lets the sweeper finish its cycle):
#    pkill -f xbridge
#
# ============================================================================
