from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    ENV: str = "prod"
    LOG_LEVEL: str | None = None

    DATABASE_URL: str = "sqlite+aiosqlite:///./community_rating.db"

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT_SECONDS: int = 30
    DB_POOL_RECYCLE_SECONDS: int = 1800

    ALLOWED_HOSTS: str = "localhost,127.0.0.1"
    SECURITY_HEADERS_ENABLED: bool = True

    # Read models
    LEADERBOARD_MAX_ROWS: int = 200
    RATING_EVENTS_MAX_ROWS: int = 100

settings = Settings()
