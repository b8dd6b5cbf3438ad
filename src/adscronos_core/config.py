"""Canonical configuration surface for adscronos services."""
from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

# EIP-155 chain ids for the networks the facilitator accepts
NETWORK_CHAIN_IDS: Dict[str, int] = {
    "cronos-testnet": 338,
    "cronos": 25,
}


class X402Config(BaseModel):
    """x402 facilitator and payee configuration."""
    facilitator_url: str = "https://facilitator.cronoslabs.org/v2/x402"
    network: Literal["cronos-testnet", "cronos"] = "cronos-testnet"
    seller_wallet: str = ""
    asset: str = "0x149a72BCdFF5513F2866e9b6394edba2884dbA07"
    default_price: str = "1000000"  # 1 USDX, 6 decimals
    max_timeout_seconds: int = 300
    token_name: str = "Bridged USDC (Stargate)"
    token_version: str = "1"

    @field_validator("seller_wallet")
    @classmethod
    def validate_seller_wallet(cls, v: str) -> str:
        if v and not _ADDRESS_RE.match(v):
            raise ValueError("seller_wallet must be a valid 0x-prefixed 20-byte address")
        return v

    @field_validator("default_price")
    @classmethod
    def validate_default_price(cls, v: str) -> str:
        if not v.isdigit():
            raise ValueError("default_price must be an integer amount in the token's smallest unit")
        return v

    @property
    def chain_id(self) -> int:
        return NETWORK_CHAIN_IDS[self.network]


class WebhookConfig(BaseModel):
    """Outbound publisher webhook delivery settings."""
    timeout_seconds: float = 10.0
    retry_delay_seconds: int = 300


class AdscronosSettings(BaseSettings):
    """Main adscronos configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ADSCRONOS_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    environment: Literal["dev", "sandbox", "prod"] = "dev"

    # postgresql:// selects the asyncpg store, anything else the in-memory store
    database_url: str = "memory://"

    log_level: str = "INFO"
    log_json: bool = True

    allowed_origins: list[str] = Field(default_factory=lambda: ["https://chatgpt.com"])

    x402: X402Config = Field(default_factory=X402Config)
    webhooks: WebhookConfig = Field(default_factory=WebhookConfig)

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, v):
        """Parse comma-separated origins from env var."""
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v

    @property
    def uses_postgres(self) -> bool:
        return self.database_url.startswith(("postgresql://", "postgres://"))


@lru_cache
def load_settings(env_file: str | None = None) -> AdscronosSettings:
    """Load AdscronosSettings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return AdscronosSettings(_env_file=env_path)
