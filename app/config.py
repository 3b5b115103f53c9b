from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./journey_engine.db"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        if v and v.startswith('postgres://'):
            return v.replace('postgres://', 'postgresql+asyncpg://', 1)
        return v

    SLOW_QUERY_THRESHOLD_MS: int = 500

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Segment membership cache
    SEGMENT_CACHE_TTL_SECONDS: int = 300
    SEGMENT_EVALUATION_CONCURRENCY: int = 20

    # Pending transition polling
    SCHEDULER_ENABLED: bool = True
    TRANSITION_POLL_SECONDS: int = 30
    TRANSITION_BATCH_SIZE: int = 200

    # Upper bound on nodes visited in one traversal without a suspension point
    MAX_TRAVERSAL_STEPS: int = 50

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    DOCS_ENABLED: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator('SEGMENT_CACHE_TTL_SECONDS', 'SEGMENT_EVALUATION_CONCURRENCY',
                     'TRANSITION_POLL_SECONDS', 'TRANSITION_BATCH_SIZE', 'MAX_TRAVERSAL_STEPS')
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @model_validator(mode='after')
    def check_production_settings(self) -> "Settings":
        """Refuse debug mode in production."""
        if self.is_production and self.DEBUG:
            raise ValueError("DEBUG must be disabled when ENVIRONMENT=production")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def sqlalchemy_echo(self) -> bool:
        """SQL echo is only allowed outside production."""
        return self.DEBUG and not self.is_production

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
