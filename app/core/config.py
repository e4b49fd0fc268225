from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
    DATABASE_URL: str = "sqlite+aiosqlite:///./dev.db"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # Rest defaults (seconds) used when neither block nor template override
    DEFAULT_REST_BETWEEN_SETS_SEC: int = 60
    DEFAULT_TRANSITION_SEC: int = 60
    AUTO_START_REST_TIMER: bool = True

    # Countdown timer
    TIMER_TICK_MS: int = 100
    NEAR_ZERO_CUE_SEC: int = 3

    # Crash recovery
    CRASH_RECOVERY_INTERVAL_SEC: float = 30
    RECOVERY_MAX_AGE_SEC: int = 4 * 60 * 60

settings = Settings()
