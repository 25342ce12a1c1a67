# /gas_engine/core/config.py
import sys
from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gas_engine.core.errors import ConfigError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # RPC endpoints, comma-separated, tried in this order
    ETHEREUM_RPC_URLS: str = ""

    # Engine tuning
    CACHE_DURATION_SECONDS: float = 15
    RPC_TIMEOUT_SECONDS: float = 10
    ENDPOINT_FAILURE_THRESHOLD: int = 3
    ENDPOINT_REVIVE_AFTER_SECONDS: float = 30
    FALLBACK_ROUNDS: int = 1
    FEE_HISTORY_BLOCKS: int = 5
    PRIORITY_FEE_PERCENTILE: float = 50
    BASE_FEE_MULTIPLIER: Decimal = Decimal("2")
    DEFAULT_PRIORITY_FEE_WEI: int = 1_500_000_000  # 1.5 gwei

    # HTTP front end
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    REQUEST_TIMEOUT_SECONDS: float = 30

    # Operational Settings
    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: str | None = None

    @property
    def rpc_urls(self) -> List[str]:
        return [u.strip() for u in self.ETHEREUM_RPC_URLS.split(",") if u.strip()]


class EngineConfig(BaseModel):
    """Everything the engine needs at construction time.

    The engine never reads the environment; callers build this either directly
    (tests, embedding) or through :meth:`from_settings`.
    """
    model_config = {"frozen": True}

    rpc_urls: List[str]
    cache_ttl_seconds: float = Field(default=15, ge=0)
    rpc_timeout_seconds: float = Field(default=10, gt=0)
    failure_threshold: int = Field(default=3, ge=1)
    revive_after_seconds: float = Field(default=30, ge=0)
    fallback_rounds: int = Field(default=1, ge=1)
    fee_history_blocks: int = Field(default=5, ge=1, le=1024)
    priority_fee_percentile: float = Field(default=50, ge=0, le=100)
    base_fee_multiplier: Decimal = Field(default=Decimal("2"), ge=1)
    default_priority_fee_wei: int = Field(default=1_500_000_000, ge=0)

    @field_validator("rpc_urls")
    @classmethod
    def _require_endpoints(cls, urls: List[str]) -> List[str]:
        urls = [u.strip() for u in urls if u and u.strip()]
        if not urls:
            raise ConfigError("No Ethereum RPC URLs provided")
        return urls

    @classmethod
    def from_settings(cls, s: "Settings") -> "EngineConfig":
        return cls(
            rpc_urls=s.rpc_urls,
            cache_ttl_seconds=s.CACHE_DURATION_SECONDS,
            rpc_timeout_seconds=s.RPC_TIMEOUT_SECONDS,
            failure_threshold=s.ENDPOINT_FAILURE_THRESHOLD,
            revive_after_seconds=s.ENDPOINT_REVIVE_AFTER_SECONDS,
            fallback_rounds=s.FALLBACK_ROUNDS,
            fee_history_blocks=s.FEE_HISTORY_BLOCKS,
            priority_fee_percentile=s.PRIORITY_FEE_PERCENTILE,
            base_fee_multiplier=s.BASE_FEE_MULTIPLIER,
            default_priority_fee_wei=s.DEFAULT_PRIORITY_FEE_WEI,
        )


try:
    settings = Settings()
except Exception as e:
    print("FAILED_TO_LOAD_SETTINGS", e, file=sys.stderr)
    # In a container, a hard exit is often appropriate if config fails.
    sys.exit(1)
