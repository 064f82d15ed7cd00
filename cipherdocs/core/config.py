
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field
from typing import List
from functools import lru_cache
import json


def clean_origin(origin: str) -> str:
    """Clean origin URL - fix common typos"""
    origin = origin.strip()
    # Fix double protocols
    origin = origin.replace("https://https://", "https://")
    origin = origin.replace("http://http://", "http://")
    # Remove trailing slash
    origin = origin.rstrip("/")
    return origin


def parse_env_list(env_value: str, default: List[str]) -> List[str]:
    """Parse environment variable as JSON list or comma-separated values"""
    if not env_value:
        return default
    env_value = env_value.strip()
    if not env_value:
        return default
    try:
        parsed = json.loads(env_value)
        if isinstance(parsed, list):
            return [clean_origin(str(item)) for item in parsed]
        return [clean_origin(str(parsed))]
    except json.JSONDecodeError:
        return [clean_origin(item) for item in env_value.split(",") if item.strip()]


class Settings(BaseSettings):
    # ============ Application ============
    APP_NAME: str = "CipherDocs"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"

    # ============ API Settings ============
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "CipherDocs API"

    # ============ Database ============
    # Defaults to SQLite for local dev, override with DATABASE_URL env var for PostgreSQL
    DATABASE_URL: str = Field(default="sqlite:///./cipherdocs.db")

    # ============ Client ============
    API_BASE_URL: str = Field(default="http://localhost:8000", description="Durable store the client talks to")
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # ============ CORS - Env vars for configuration ============
    CORS_ORIGINS: str = Field(default="", description="Comma-separated or JSON list of allowed origins")
    FILE_TYPES: str = Field(default="", description="Comma-separated or JSON list of allowed file types")
    KEY_LOAD_ORDER: str = Field(default="", description="Comma-separated search key source priority")

    # ============ Key Hierarchy ============
    KEY_STORE_MAX_ATTEMPTS: int = 3
    CREDENTIALS_WAIT_TIMEOUT: float = 60.0  # seconds
    LOCAL_KEY_DIR: str = Field(default="~/.cipherdocs/keys")

    # ============ Searchable Encryption ============
    VECTOR_SCALING_FACTOR: float = 1.0

    # ============ Document Processing ============
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    DOCUMENT_CHUNK_SIZE: int = 1000
    DOCUMENT_CHUNK_OVERLAP: int = 200
    WEBSITE_CHUNK_SIZE: int = 5000
    WEBSITE_CHUNK_OVERLAP: int = 200
    ENCRYPTION_CONCURRENCY: int = 8

    # ============ Embeddings ============
    EMBEDDING_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"
    EMBEDDING_DIMENSION: int = 384
    EMBEDDING_BATCH_SIZE: int = 10

    # ============ Websites ============
    WEBSITE_TIMEOUT_SECONDS: float = 10.0
    WEBSITE_MAX_CONTENT_LENGTH: int = 5_000_000
    WEBSITE_USER_AGENT: str = "Mozilla/5.0 (compatible; CipherDocsBot/1.0)"

    # ============ Processing Jobs ============
    PROGRESS_RETENTION_MINUTES: int = 30

    # ============ Search ============
    SEARCH_MATCH_THRESHOLD: float = 0.3
    SEARCH_MATCH_COUNT: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    @computed_field
    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """Get allowed origins from CORS_ORIGINS env var or defaults"""
        defaults = [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]
        return parse_env_list(self.CORS_ORIGINS, defaults)

    @computed_field
    @property
    def ALLOWED_FILE_TYPES(self) -> List[str]:
        defaults = [
            "application/pdf",
            "text/plain",
        ]
        return parse_env_list(self.FILE_TYPES, defaults)

    @computed_field
    @property
    def KEY_SOURCE_PRIORITY(self) -> List[str]:
        defaults = ["database", "local", "generate"]
        return [item.lower() for item in parse_env_list(self.KEY_LOAD_ORDER, defaults)]

    @computed_field
    @property
    def is_postgres(self) -> bool:
        return "postgresql" in self.DATABASE_URL.lower() or "postgres" in self.DATABASE_URL.lower()


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
