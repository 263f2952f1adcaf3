"""
Configuration management for the custody wallet.

Values come from a YAML file (optional) and the environment. Environment
variables use the `WALLET_` prefix and `__` for nesting, e.g.
`WALLET_RISK__DAILY_LIMIT=5000000000000000000`.
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ScannerConfig(BaseModel):
    """Block scanner settings."""

    enabled: bool = True
    start_block: int = Field(default=0, ge=0, description="0 starts from the current head")
    confirm_blocks: int = Field(default=12, ge=0)
    batch_size: int = Field(default=10, ge=1)
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    shutdown_grace_seconds: float = Field(default=2.0, ge=0)


class ChainConfig(BaseModel):
    """A chain to scan."""

    name: str
    chain_id: Optional[int] = None
    rpc_urls: list[str] = Field(default_factory=list)
    is_testnet: bool = False
    watch_addresses: list[str] = Field(default_factory=list)

    # Per-chain overrides of the global scanner settings
    start_block: Optional[int] = Field(default=None, ge=0)
    confirm_blocks: Optional[int] = Field(default=None, ge=0)
    batch_size: Optional[int] = Field(default=None, ge=1)
    poll_interval_seconds: Optional[float] = Field(default=None, gt=0)

    def scanner_config(self, defaults: ScannerConfig) -> ScannerConfig:
        """Global scanner settings with this chain's overrides applied."""
        overrides = {
            key: value
            for key, value in {
                "start_block": self.start_block,
                "confirm_blocks": self.confirm_blocks,
                "batch_size": self.batch_size,
                "poll_interval_seconds": self.poll_interval_seconds,
            }.items()
            if value is not None
        }
        return defaults.model_copy(update=overrides)


class RiskConfig(BaseModel):
    """Compliance limits. Amounts are in wei."""

    enabled: bool = True
    single_limit: Optional[int] = Field(default=None, ge=0)
    daily_limit: Optional[int] = Field(default=None, ge=0)
    whitelist_addrs: list[str] = Field(default_factory=list)
    blacklist_addrs: list[str] = Field(default_factory=list)
    require_manual_approval: bool = False


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 8080


class Settings(BaseSettings):
    """Full wallet configuration."""

    model_config = SettingsConfigDict(
        env_prefix="WALLET_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    chains: list[ChainConfig] = Field(default_factory=list)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    # Deposit watch list shared by every chain
    watch_addresses: list[str] = Field(default_factory=list)

    default_chain: Optional[str] = Field(
        default=None, description="Chain used by the HTTP API (first chain if unset)"
    )
    api_token: Optional[str] = Field(default=None, description="X-API-Key for the HTTP API")
    hot_wallet_private_key: Optional[str] = Field(
        default=None, description="Key used by the HTTP transfer endpoint"
    )

    @field_validator("chains")
    @classmethod
    def _unique_chain_names(cls, chains: list[ChainConfig]) -> list[ChainConfig]:
        names = [c.name for c in chains]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate chain names in config: {names}")
        return chains

    def get_chain(self, name: Optional[str] = None) -> ChainConfig:
        """Look up a chain by name; with no name, the default (or first) chain."""
        name = name or self.default_chain
        if name is None:
            if not self.chains:
                raise LookupError("No chains configured")
            return self.chains[0]
        for chain in self.chains:
            if chain.name == name:
                return chain
        raise LookupError(f"Unknown chain: {name}")


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """
    Load settings from a YAML file plus the environment.

    Keys present in the file take precedence; the environment supplies
    everything else (typically secrets such as the hot wallet key).
    """
    if config_path is None:
        return Settings()

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    return Settings(**data)
