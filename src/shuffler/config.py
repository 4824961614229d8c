"""Application configuration using pydantic-settings.

Holds the two Base networks the shuffler watches and the timing and gas
policy used when relaying funds to the escape hatch.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    log_level: str = Field(default="INFO", description="Root logging level")
    dry_run: bool = Field(
        default=False, description="Use simulated in-memory networks (no real RPC)"
    )

    # ======================
    # Networks
    # ======================
    testnet_name: str = Field(default="Base Sepolia", description="Test network display name")
    testnet_rpc_url: str = Field(
        default="https://sepolia.base.org", description="Test network RPC URL"
    )
    testnet_chain_id: int = Field(default=84532, description="Test network chain id")
    testnet_explorer_url: str = Field(
        default="https://sepolia.basescan.org", description="Test network block explorer"
    )

    mainnet_name: str = Field(default="Base", description="Production network display name")
    mainnet_rpc_url: str = Field(
        default="https://mainnet.base.org", description="Production network RPC URL"
    )
    mainnet_chain_id: int = Field(default=8453, description="Production network chain id")
    mainnet_explorer_url: str = Field(
        default="https://basescan.org", description="Production network block explorer"
    )

    rpc_timeout: float = Field(default=30.0, description="Per-request RPC timeout in seconds")

    # ======================
    # Monitoring / Forwarding
    # ======================
    poll_interval: float = Field(default=5.0, description="Seconds between balance checks")
    forward_delay: float = Field(
        default=30.0, description="Seconds to wait between detecting funds and forwarding"
    )
    confirmation_timeout: float = Field(
        default=60.0, description="Seconds to wait for a forwarding receipt"
    )
    receipt_poll_interval: float = Field(
        default=2.0, description="Seconds between receipt lookups"
    )
    serialize_forwarding: bool = Field(
        default=False,
        description="Serialize automatic and manual forwarding per one-off address",
    )

    # ======================
    # Gas Policy
    # ======================
    gas_limit: int = Field(default=25000, description="Gas limit for a plain value transfer")
    testnet_gas_buffer_pct: int = Field(
        default=25, description="Gas price buffer on the test network (percent)"
    )
    mainnet_gas_buffer_pct: int = Field(
        default=20, description="Gas price buffer on the production network (percent)"
    )
    gas_safety_margin_pct: int = Field(
        default=10, description="Extra margin added on top of the gas cost (percent)"
    )

    # ======================
    # Wallet (CLI only)
    # ======================
    wallet_private_key: Optional[str] = Field(
        default=None,
        description="Local wallet key used by the CLI to sign (ephemeral if unset)",
    )

    # ======================
    # Recovery
    # ======================
    entropy_store_path: Optional[str] = Field(
        default="./data/entropy.json",
        description="JSON file holding nonce -> random entropy (None = memory only)",
    )
    recovery_export_filename: str = Field(
        default="privacy_shuffler_recovery.json",
        description="Default file name for exported recovery documents",
    )

    def get_gas_buffer_pct(self, network: str) -> int:
        """Gas price buffer for a network identifier."""
        if network.lower() == "testnet":
            return self.testnet_gas_buffer_pct
        return self.mainnet_gas_buffer_pct

    def get_safe_dict(self) -> dict:
        """Return settings dict for display."""
        return {
            "environment": self.environment,
            "dry_run": self.dry_run,
            "networks": {
                "testnet": {
                    "name": self.testnet_name,
                    "rpc": self.testnet_rpc_url,
                    "chain_id": self.testnet_chain_id,
                },
                "mainnet": {
                    "name": self.mainnet_name,
                    "rpc": self.mainnet_rpc_url,
                    "chain_id": self.mainnet_chain_id,
                },
            },
            "timing": {
                "poll_interval": self.poll_interval,
                "forward_delay": self.forward_delay,
                "confirmation_timeout": self.confirmation_timeout,
            },
            "gas": {
                "gas_limit": self.gas_limit,
                "testnet_buffer_pct": self.testnet_gas_buffer_pct,
                "mainnet_buffer_pct": self.mainnet_gas_buffer_pct,
                "safety_margin_pct": self.gas_safety_margin_pct,
            },
            "wallet_configured": bool(self.wallet_private_key),
            "entropy_store": self.entropy_store_path or "(memory)",
            "serialize_forwarding": self.serialize_forwarding,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
