from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # environment: "dev" for running the service locally, "test" for pytest
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str | None = None
    TEST_DATABASE_URL: str | None = None

    # --- Scheduler ---
    SCHEDULER_ENABLED: bool = True
    # IANA timezone name used by APScheduler (e.g., "UTC", "America/Edmonton").
    SCHEDULER_TZ: str = "UTC"
    # Optional dedicated job store URL. If None, DATABASE_URL is used.
    SCHEDULER_DB_URL: str | None = None
    VALIDATION_INTERVAL_MINUTES: int = 5
    RETRAIN_CHECK_HOUR: int = 3

    # --- Prediction cache / batching ---
    CACHE_TTL_MINUTES: int = 15
    PREDICTION_BATCH_HOURS: int = 24
    MAX_HORIZON_HOURS: int = 168

    # --- Feature calculation ---
    FEATURE_BATCH_SIZE: int = 1000
    PRIMARY_WEATHER_STATION: str = "calgary"

    # --- Training ---
    MIN_TRAINING_RECORDS: int = 100
    MIN_FOLD_TRAIN_ROWS: int = 48
    TRAIN_SPLIT_RATIO: float = 0.8
    MODEL_RANDOM_STATE: int = 42

    # --- Validation ---
    VALIDATION_BATCH_LIMIT: int = 500
    VALIDATION_MATCH_MINUTES: int = 30
    SPIKE_PRICE_THRESHOLD: float = 200.0
    ELEVATED_PRICE_THRESHOLD: float = 100.0
    LOW_PRICE_THRESHOLD: float = 30.0

    # --- Auto retraining ---
    RETRAIN_SMAPE_THRESHOLD: float = 30.0
    RETRAIN_QUALITY_THRESHOLD: float = 70.0
    RETRAIN_MAX_INTERVAL_HOURS: int = 168
    RETRAIN_LOOKBACK_HOURS: int = 168
    RETRAIN_MIN_SAMPLES: int = 24

    # --- Upstream market data (natural gas feed) ---
    GAS_PRICE_API_URL: str = "https://api.gas-market.example.com"
    GAS_PRICE_API_KEY: str | None = Field(None, description="Paid feed key; without it the default price table is used.")
    UPSTREAM_TIMEOUT_SECONDS: float = 15.0
    DEFAULT_GAS_PRICE: float = 2.5  # CAD/GJ

    @model_validator(mode="after")
    def _check_thresholds(self):
        if self.ELEVATED_PRICE_THRESHOLD > self.SPIKE_PRICE_THRESHOLD:
            raise ValueError("ELEVATED_PRICE_THRESHOLD must not exceed SPIKE_PRICE_THRESHOLD")
        if not 0.5 <= self.TRAIN_SPLIT_RATIO < 1.0:
            raise ValueError("TRAIN_SPLIT_RATIO must be in [0.5, 1.0)")
        return self

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
