from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Tag Verification Engine"
    environment: str = "dev"
    log_level: str = "INFO"
    public_base_url: str = "http://localhost:3000"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── ON-CHAIN REGISTRY (read-only) ───────────
    chain_rpc_url: str = ""
    chain_contract_address: str = ""
    chain_id: int = 1
    chain_network: str = "mainnet"
    chain_timeout_seconds: float = 5.0
    chain_retries: int = 1

    # ─────────── AI RISK SERVICE ───────────
    ai_base_url: str = "https://api.kolosal.ai/v1"
    ai_api_key: str = ""
    ai_model: str = "Claude Sonnet 4.5"
    ai_timeout_seconds: float = 15.0
    ai_temperature: float = 0.1
    ai_max_tokens: int = 1024

    fraud_cache_ttl_seconds: int = 300  # 5 minutes
    fraud_cache_bucket_by_location: bool = False

    # ─────────── GATES ───────────
    scan_rate_limit_per_minute: int = 30

    csrf_enabled: bool = True
    csrf_secret: str = "change-me"
    csrf_cookie_name: str = "csrf_token"
    csrf_header_name: str = "X-CSRF-Token"
    csrf_max_age_seconds: int = 86400  # 24 hours


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
