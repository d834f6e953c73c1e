from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Feedback store (Postgres)
    DATABASE_URL: str = "postgresql://localhost:5432/pulsegov"

    # Redis settings
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 20

    # OpenAI settings
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_TIMEOUT_SECONDS: float = 120.0
    OPENAI_MAX_RETRIES: int = 2

    # =================================================================
    # CHAT ASSISTANT
    # =================================================================
    CHAT_TEMPERATURE: float = 0.7
    CHAT_MAX_COMPLETION_TOKENS: int = 4000
    CHAT_MAX_CONTEXT_TOKENS: int = 8000
    CHAT_COMPRESSION_THRESHOLD: int = 6000
    CHAT_PRESERVE_RECENT_TURNS: int = 5

    # =================================================================
    # FEEDBACK CONTEXT + ANALYSIS
    # =================================================================
    FEEDBACK_SAMPLE_SIZE: int = 50
    FEEDBACK_CACHE_TTL_SECONDS: int = 3600  # 1 hour
    ANALYSIS_TEMPERATURE: float = 0.2
    ANALYTICS_TEMPERATURE: float = 0.3
    ANALYTICS_SAMPLE_SIZE: int = 100

    # =================================================================
    # JOBS
    # =================================================================
    JOB_STATUS_TTL_SECONDS: int = 3600  # 1 hour
    JOB_RESULT_TTL_SECONDS: int = 86400  # 24 hours
    JOB_STALE_AFTER_SECONDS: int = 600  # 10 minutes
    WORKER_QUEUE_KEY: str = "feedback_jobs:queue"
    WORKER_MAX_ATTEMPTS: int = 3
    WORKER_POLL_TIMEOUT_SECONDS: int = 5
    WORKER_REDIS_RETRY_SECONDS: float = 2.0

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Development runs with a smaller pool and a shorter timeout.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config


settings = Settings()
