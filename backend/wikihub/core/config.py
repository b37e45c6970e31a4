from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # database, redis & blobs
    # Plain string so sqlite:// URLs are accepted as well as postgresql+psycopg://
    DATABASE_URL: str
    REDIS_URL: str
    CELERY_BROKER_URL: str | None = None  # falls back to REDIS_URL
    BLOB_STORE_ROOT: str = "./data/blobs"
    BACKUP_KEEP: int = 7

    # auth / security
    API_AUTH_KEY: str | None = None  # moderator key
    FRONTEND_ORIGIN: str | None = None
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # cache
    CACHE_TTL_SECONDS: int = 900

    # embeddings (Ollama, OpenAI-compatible endpoint). Unset disables semantic search.
    OLLAMA_BASE_URL: str | None = None
    EMBEDDING_MODEL: str = "nomic-embed-text"
    EMBEDDING_DIMENSIONS: int = 768
    EMBEDDING_TIMEOUT_SECONDS: int = 60
    EMBEDDING_MAX_CHARS: int = 4000
    EMBEDDING_BATCH_SIZE: int = 50
    EMBEDDING_MAX_CONCURRENCY: int = 2

    # sync
    SYNC_REQUEST_DELAY_SECONDS: float = 1.0
    SYNC_HTTP_TIMEOUT_SECONDS: int = 30
    SYNC_USER_AGENT: str = "WikiHub-Mirror/1.0 (+https://wikihub.local)"
    SYNC_LOCK_TTL_SECONDS: int = 15 * 60  # lease, renewed after every page
    SYNC_PROGRESS_INTERVAL: int = 25

    # moderation
    EDIT_MAX_PENDING_PER_IP: int = 5
    EDIT_MAX_SUBMISSIONS_PER_WINDOW: int = 10
    EDIT_SUBMISSION_WINDOW_HOURS: int = 24
    EDIT_MAX_CONTENT_CHARS: int = 500_000
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 25
    SMTP_FROM: str = "wiki@wikihub.local"
    MODERATOR_EMAIL: str | None = None

    # search
    SEARCH_RATE_LIMIT: int = 30
    SEARCH_RATE_WINDOW_SECONDS: int = 60
    SEARCH_DEFAULT_LIMIT: int = 30
    SEARCH_MAX_LIMIT: int = 100

    # cross-references
    CROSS_LINK_MIN_SIMILARITY: float = 0.3
    CROSS_LINK_RECHECK_DAYS: int = 7
    CROSS_LINK_BATCH_SIZE: int = 500

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
