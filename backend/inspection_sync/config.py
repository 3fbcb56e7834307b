from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Inspection Sync"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Local cache (drafts + mutation queue)
    LOCAL_DATABASE_URL: str = "sqlite+aiosqlite:///./inspection_cache.db"

    # Remote system of record
    REMOTE_API_URL: str = "http://localhost:8000"
    REMOTE_API_TOKEN: str = ""
    REMOTE_TIMEOUT_SECONDS: float = 30.0

    # Connectivity
    CONNECTIVITY_PROBE_URL: str = "http://localhost:8000/api/health"
    CONNECTIVITY_PROBE_TIMEOUT_SECONDS: float = 3.0

    # Sync
    CONFLICT_STRATEGY: str = "newest-wins"
    SYNC_MAX_RETRIES: int = 3
    DRAFT_SCHEMA_VERSION: int = 1

    # Pagination
    DEFAULT_PAGE_SIZE: int = 25
    MIN_PAGE_SIZE: int = 1
    MAX_PAGE_SIZE: int = 100

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


settings = Settings()
