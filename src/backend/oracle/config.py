"""
Application configuration via environment variables.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment / .env file."""

    # App
    app_name: str = "Resolution Oracle"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Agents
    agent_timeout_seconds: float = 30.0
    agent_staleness_seconds: float = 300.0  # health staleness window

    # Resolution
    max_resolution_time_seconds: float = 300.0
    dispute_window_seconds: float = 1800.0

    # Evidence collection
    max_evidence_points: int = 100
    health_check_interval_seconds: float = 30.0
    health_check_timeout_seconds: float = 5.0
    data_source_timeout_seconds: float = 10.0

    # Data providers
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str = ""  # Optional, raises rate limits
    coingecko_coin_ids: List[str] = ["bitcoin", "ethereum"]
    newsapi_base_url: str = "https://newsapi.org/v2"
    newsapi_api_key: str = ""  # Required for news evidence

    # Settlement layer
    settlement_base_url: str = ""  # Empty -> in-memory ledger
    settlement_api_key: str = ""

    # Consensus voting constants
    consensus_single_agent_penalty: float = 0.7
    consensus_unanimous_threshold: float = 0.8
    consensus_unanimous_boost: float = 1.1
    consensus_high_margin: float = 0.7
    consensus_high_margin_boost: float = 1.1
    consensus_low_margin: float = 0.4
    consensus_low_margin_penalty: float = 0.8
    consensus_agent_bonus_step: float = 0.02
    consensus_agent_bonus_cap: float = 0.1
    consensus_diverse_outcome_penalty: float = 0.9
    consensus_fast_response_seconds: float = 5.0
    consensus_fast_response_bonus: float = 0.1

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
