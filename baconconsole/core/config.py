"""Configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings

# Chain ids accepted when adding an RPC endpoint
CHAIN_IDS = {
    "mainnet": "NetXdQprcVkpaWU",
    "granadanet": "NetXz969SFaFn8k",
}


class Settings(BaseSettings):
    """Console settings loaded from environment variables (BACON_ prefix)."""

    # Control API of the baking node
    api_base_url: str = "http://127.0.0.1:8082"

    # Public chain RPC
    chain_rpc_url: str = "https://mainnet-tezos.giganode.io"
    network: str = "mainnet"

    # Links shown next to operation hashes and proposals
    explorer_url: str = "https://tzstats.com"
    proposal_info_url: str = "https://agora.tezos.com/proposal"

    request_timeout_seconds: float = 30.0

    # Polling cadence
    status_poll_seconds: float = 10.0
    payout_poll_seconds: float = 30.0  # settlement is bounded by block time
    delegate_refresh_seconds: float = 300.0  # 5 minutes

    # Cache Settings
    delegate_cache_ttl_seconds: int = 240

    notification_capacity: int = 10

    # Network constants (mainnet)
    blocks_per_cycle: int = 8192
    min_registration_balance_mutez: int = 8_001_000_000

    class Config:
        env_prefix = "BACON_"
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
