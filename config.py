"""Configuration management for the Helix swap engine."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import toml

from btc.builder import FeeSchedule
from btc.keys import NETWORK_VERSIONS
from core.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Main engine configuration."""

    # External services
    mailbox_url: str
    oracle_url: str
    escrow_url: str
    compute_url: str

    # Bitcoin settings
    btc_network: str = "BTC"
    satoshis_per_byte: int = 20
    input_size: int = 148
    output_size: int = 34
    block_time_secs: int = 600
    satoshis_per_coin: int = 100_000_000
    escrow_lock_days: float = 2.0

    # Trade settings
    freshness_timeout_hours: float = 12.0
    request_timeout_secs: float = 30.0

    # Service settings
    database_path: str = "helix-swap.db"
    api_host: str = "127.0.0.1"
    api_port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_file(cls, config_path: Path) -> "EngineConfig":
        """Load configuration from TOML file.

        Args:
            config_path: Path to configuration file

        Returns:
            EngineConfig instance

        Raises:
            ConfigurationError: If config is invalid
        """
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        logger.info(f"Loading configuration from {config_path}")

        try:
            with open(config_path, "r") as f:
                config_data = toml.load(f)
        except (OSError, toml.TomlDecodeError) as e:
            raise ConfigurationError(f"Failed to parse configuration file: {e}")

        known = set(cls.__dataclass_fields__)
        unknown = set(config_data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        try:
            return cls(**config_data)
        except TypeError as e:
            raise ConfigurationError(f"Missing required configuration key: {e}")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load configuration from environment variables."""
        try:
            return cls(
                mailbox_url=os.getenv("MAILBOX_URL", "http://localhost:3001"),
                oracle_url=os.getenv("UTXO_ORACLE_URL", "https://chain.so/api/v2/get_tx_unspent"),
                escrow_url=os.getenv("ESCROW_URL", "http://localhost:3002"),
                compute_url=os.getenv("COMPUTE_URL", "http://localhost:3003"),
                btc_network=os.getenv("BTC_NETWORK", "BTC"),
                satoshis_per_byte=int(os.getenv("SATOSHIS_PER_BYTE", "20")),
                input_size=int(os.getenv("BTC_INPUT_SIZE", "148")),
                output_size=int(os.getenv("BTC_OUTPUT_SIZE", "34")),
                block_time_secs=int(os.getenv("BTC_BLOCK_TIME_SECS", "600")),
                satoshis_per_coin=int(os.getenv("SATOSHIS_PER_COIN", "100000000")),
                escrow_lock_days=float(os.getenv("ESCROW_LOCK_DAYS", "2")),
                freshness_timeout_hours=float(os.getenv("FRESHNESS_TIMEOUT_HOURS", "12")),
                request_timeout_secs=float(os.getenv("REQUEST_TIMEOUT_SECS", "30")),
                database_path=os.getenv("DATABASE_PATH", "helix-swap.db"),
                api_host=os.getenv("API_HOST", "127.0.0.1"),
                api_port=int(os.getenv("API_PORT", "8080")),
                log_level=os.getenv("LOG_LEVEL", "INFO"),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting in environment: {e}")

    @property
    def fees(self) -> FeeSchedule:
        return FeeSchedule(
            satoshis_per_byte=self.satoshis_per_byte,
            input_size=self.input_size,
            output_size=self.output_size,
            satoshis_per_coin=self.satoshis_per_coin,
            block_time_secs=self.block_time_secs,
        )

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        for name in ("mailbox_url", "oracle_url", "escrow_url", "compute_url"):
            if not getattr(self, name):
                raise ConfigurationError(f"{name} is required")

        if self.btc_network.upper() not in NETWORK_VERSIONS:
            raise ConfigurationError(f"Unknown btc_network: {self.btc_network}")

        # A zero fee rate is allowed
        if self.satoshis_per_byte < 0:
            raise ConfigurationError("satoshis_per_byte cannot be negative")

        if self.input_size <= 0 or self.output_size <= 0:
            raise ConfigurationError("input_size and output_size must be positive")

        if self.block_time_secs <= 0 or self.satoshis_per_coin <= 0:
            raise ConfigurationError("block_time_secs and satoshis_per_coin must be positive")

        if self.freshness_timeout_hours <= 0:
            raise ConfigurationError("freshness_timeout_hours must be positive")

        if self.escrow_lock_days <= 0:
            raise ConfigurationError("escrow_lock_days must be positive")

        logger.info("Configuration validated successfully")
