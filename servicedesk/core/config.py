from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    MAX_SLOTS_PER_SERVICE: int = 3
    PROMOTION_MAX_RETRIES: int = 3

    STREAM_INTERVAL_SECONDS: float = 1.0
    QUEUE_STREAM_TIMEOUT_SECONDS: float = 3600.0

    STORE_PROVIDER: str = "memory"  # "memory" | "json"
    STORE_DATA_DIR: str = "./data"

    CORS_ORIGINS: list[str] = ["http://localhost:4200"]


settings = Settings()
