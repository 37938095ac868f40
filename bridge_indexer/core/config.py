"""
Configuration management using Pydantic Settings.
Supports multiple environments: development, staging, production.
"""

from typing import Optional, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# OP Stack L2 predeploys
L2_CROSS_DOMAIN_MESSENGER = "0x4200000000000000000000000000000000000007"
L2_STANDARD_BRIDGE = "0x4200000000000000000000000000000000000010"
L2_ERC721_BRIDGE = "0x4200000000000000000000000000000000000014"
L2_TO_L1_MESSAGE_PASSER = "0x4200000000000000000000000000000000000016"


class Settings(BaseSettings):
    """Application settings with environment-based configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BRIDGE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Bridge Indexer"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"

    # API
    api_enabled: bool = True
    api_v1_prefix: str = "/api/v1"
    cors_origins: List[str] = Field(default_factory=list)
    host: str = "127.0.0.1"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./bridge_indexer.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_busy_timeout: int = 30  # seconds, sqlite only

    # Chains
    l1_rpc_url: str = "http://localhost:8545"
    l2_rpc_url: str = "http://localhost:9545"
    rpc_timeout: float = 30.0  # seconds

    # L1 contracts
    l1_standard_bridge_address: str = ""
    l1_erc721_bridge_address: str = ""
    optimism_portal_address: str = ""
    l1_cross_domain_messenger_address: str = ""

    # L2 contracts
    l2_standard_bridge_address: str = L2_STANDARD_BRIDGE
    l2_erc721_bridge_address: str = L2_ERC721_BRIDGE
    l2_cross_domain_messenger_address: str = L2_CROSS_DOMAIN_MESSENGER
    l2_message_passer_address: str = L2_TO_L1_MESSAGE_PASSER

    # Indexer settings
    indexer_poll_interval: float = 12.0  # seconds
    indexer_chunk_size: int = 10_000
    indexer_confirmations: int = 0
    indexer_stop_timeout: float = 30.0  # seconds
    l1_start_block: int = 0
    l2_start_block: int = 0
    fetch_max_retries: int = 3
    fetch_retry_delay: float = 2.0  # seconds, multiplied by attempt number

    # Withdrawal timing
    challenge_period: int = 12 * 60 * 60  # seconds
    proof_maturity_delay: int = 12  # seconds

    # Retry handler
    retry_max_retries: int = 3
    retry_initial_delay: float = 1.0  # seconds
    retry_max_delay: float = 60.0  # seconds
    retry_backoff_multiplier: float = 2.0
    retry_jitter: float = 0.1

    # Health monitor
    health_max_poll_age: float = 120.0  # seconds
    health_max_consecutive_failures: int = 5

    # Relayer
    relayer_enabled: bool = False
    relayer_poll_interval: float = 30.0  # seconds
    relayer_max_concurrent: int = 3
    relayer_tx_delay: float = 1.0  # seconds between submissions
    relayer_auto_prove: bool = True
    relayer_auto_finalize: bool = True
    relayer_filter_user: Optional[str] = None
    relayer_state_file: str = "./relayer-state.json"
    relayer_submitter: Optional[str] = Field(
        default=None,
        description="Submitter factory as 'package.module:callable'",
    )

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console
    log_file: Optional[str] = None

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["development", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError("Log format must be 'json' or 'console'")
        return v

    @field_validator("indexer_chunk_size", "fetch_max_retries", "relayer_max_concurrent")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def rpc_url_for(self, chain: str) -> str:
        """RPC endpoint for 'l1' or 'l2'."""
        return self.l1_rpc_url if _chain_value(chain) == "l1" else self.l2_rpc_url

    def start_block_for(self, chain: str) -> int:
        return self.l1_start_block if _chain_value(chain) == "l1" else self.l2_start_block

    def addresses_for(self, chain: str) -> List[str]:
        """
        Contract addresses whose logs are indexed on a chain.

        Unset addresses are skipped; an empty list means no address filter.
        """
        if _chain_value(chain) == "l1":
            candidates = [
                self.l1_standard_bridge_address,
                self.l1_erc721_bridge_address,
                self.optimism_portal_address,
                self.l1_cross_domain_messenger_address,
            ]
        else:
            candidates = [
                self.l2_standard_bridge_address,
                self.l2_erc721_bridge_address,
                self.l2_cross_domain_messenger_address,
                self.l2_message_passer_address,
            ]
        return [address for address in candidates if address]


def _chain_value(chain) -> str:
    return getattr(chain, "value", chain)


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, with explicit overrides on top."""
    return Settings(**overrides)


class DatabaseConfig:
    """Database-specific configuration."""

    @staticmethod
    def get_database_url(url: str) -> str:
        """Rewrite plain postgres/sqlite URLs to their async drivers."""
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @staticmethod
    def get_engine_config(settings: Settings, url: str) -> dict:
        """Get SQLAlchemy engine configuration."""
        if url.startswith("sqlite"):
            return {
                "connect_args": {"timeout": settings.database_busy_timeout},
            }
        return {
            "pool_size": settings.database_pool_size,
            "max_overflow": settings.database_max_overflow,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }
