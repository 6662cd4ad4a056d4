from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = "creatorsync"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "CREATORSYNC_ENVIRONMENT"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/creatorsync",
        validation_alias=AliasChoices("DATABASE_URL", "CREATORSYNC_DATABASE_URL"),
    )

    apify_token: str | None = Field(default=None, validation_alias=AliasChoices("APIFY_TOKEN", "CREATORSYNC_APIFY_TOKEN"))
    apify_task_id: str | None = Field(default=None, validation_alias=AliasChoices("APIFY_TASK_ID", "CREATORSYNC_APIFY_TASK_ID"))
    apify_actor_id: str = Field(
        default="clockworks/tiktok-scraper",
        validation_alias=AliasChoices("APIFY_ACTOR_ID", "CREATORSYNC_APIFY_ACTOR_ID"),
    )
    apify_timeout_sec: int = Field(default=300, validation_alias=AliasChoices("APIFY_TIMEOUT_SEC", "CREATORSYNC_APIFY_TIMEOUT_SEC"))

    media_backend: str = Field(default="supabase", validation_alias=AliasChoices("MEDIA_BACKEND", "CREATORSYNC_MEDIA_BACKEND"))
    supabase_url: str | None = Field(default=None, validation_alias=AliasChoices("SUPABASE_URL", "CREATORSYNC_SUPABASE_URL"))
    supabase_service_key: str | None = Field(
        default=None, validation_alias=AliasChoices("SUPABASE_SERVICE_KEY", "CREATORSYNC_SUPABASE_SERVICE_KEY")
    )
    supabase_bucket: str = Field(default="images", validation_alias=AliasChoices("SUPABASE_BUCKET", "CREATORSYNC_SUPABASE_BUCKET"))
    media_local_dir: str = Field(default="/data/media", validation_alias=AliasChoices("MEDIA_LOCAL_DIR", "CREATORSYNC_MEDIA_LOCAL_DIR"))
    media_public_base_url: str = Field(
        default="http://localhost:8000/media",
        validation_alias=AliasChoices("MEDIA_PUBLIC_BASE_URL", "CREATORSYNC_MEDIA_PUBLIC_BASE_URL"),
    )
    media_fetch_timeout_sec: float = Field(
        default=30.0, validation_alias=AliasChoices("MEDIA_FETCH_TIMEOUT_SEC", "CREATORSYNC_MEDIA_FETCH_TIMEOUT_SEC")
    )
    media_fetch_retries: int = Field(default=2, validation_alias=AliasChoices("MEDIA_FETCH_RETRIES", "CREATORSYNC_MEDIA_FETCH_RETRIES"))

    sync_concurrency: int = Field(default=4, ge=1, le=8, validation_alias=AliasChoices("SYNC_CONCURRENCY", "CREATORSYNC_SYNC_CONCURRENCY"))
    sync_timeout_sec: int = Field(default=900, validation_alias=AliasChoices("SYNC_TIMEOUT_SEC", "CREATORSYNC_SYNC_TIMEOUT_SEC"))
    sync_default_post_limit: int = Field(
        default=50, validation_alias=AliasChoices("SYNC_DEFAULT_POST_LIMIT", "CREATORSYNC_SYNC_DEFAULT_POST_LIMIT")
    )
    auto_sync_interval_hours: int = Field(
        default=24, validation_alias=AliasChoices("AUTO_SYNC_INTERVAL_HOURS", "CREATORSYNC_AUTO_SYNC_INTERVAL_HOURS")
    )

    match_window_hours: float = Field(default=48.0, validation_alias=AliasChoices("MATCH_WINDOW_HOURS", "CREATORSYNC_MATCH_WINDOW_HOURS"))
    match_similarity_threshold: float = Field(
        default=0.6, validation_alias=AliasChoices("MATCH_SIMILARITY_THRESHOLD", "CREATORSYNC_MATCH_SIMILARITY_THRESHOLD")
    )
    match_min_body_length: int = Field(
        default=5, validation_alias=AliasChoices("MATCH_MIN_BODY_LENGTH", "CREATORSYNC_MATCH_MIN_BODY_LENGTH")
    )

    scheduler_enabled: bool = Field(default=True, validation_alias=AliasChoices("SCHEDULER_ENABLED", "CREATORSYNC_SCHEDULER_ENABLED"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
