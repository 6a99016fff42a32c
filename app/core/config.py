"""Configuration management for the document chat service."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # OpenAI configuration (required)
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key")

    # Environment
    APP_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")
    APP_URL: str = Field(default="http://localhost:3000", description="Public URL of the web app")

    # Embedding configuration
    EMBEDDING_PROVIDER: str = Field(default="voyage", description="Embedding provider: voyage or openai")
    EMBEDDING_MODEL: str = Field(default="voyage-3-large", description="Embedding model")
    EMBEDDING_DIM: int = Field(default=1024, description="Embedding vector dimension")
    VOYAGE_API_KEY: str | None = Field(default=None, description="Voyage AI API key")

    # Chat completion configuration
    CHAT_MODEL: str = Field(default="gpt-4o-mini", description="Model for chat answers")
    CHAT_TEMPERATURE: float = Field(default=0.3, description="Sampling temperature for chat")
    CHAT_MAX_TOKENS: int = Field(default=1000, description="Max tokens per chat answer")

    # Pinecone configuration
    PINECONE_API_KEY: str | None = Field(default=None, description="Pinecone API key")
    PINECONE_INDEX: str = Field(default="documents", description="Pinecone index name")
    PINECONE_NAMESPACE: str = Field(default="default", description="Pinecone namespace")

    # Rate limiting
    REDIS_URL: str | None = Field(default=None, description="Redis URL for shared rate limits")
    RATE_LIMIT_EXEMPT_USERS: str = Field(
        default="", description="Comma-separated identifiers exempt from rate limits"
    )

    # Email (Resend)
    RESEND_API_KEY: str | None = Field(default=None, description="Resend API key")
    RESEND_FROM_EMAIL: str = Field(default="noreply@example.com", description="Sender address")
    RESEND_FROM_NAME: str = Field(default="Knowledge Chat", description="Sender display name")

    # Auth
    CLERK_SECRET_KEY: str | None = Field(default=None, description="Clerk secret key (migration only)")
    ADMIN_API_KEY: str | None = Field(default=None, description="API key for internal tools")

    # Image OCR
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    OCR_MODEL: str = Field(default="claude-haiku-4-5-20251001", description="Vision model for OCR")

    # Upload and ingestion
    STORAGE_BUCKET: str = Field(default="documents", description="Supabase Storage bucket")
    MAX_UPLOAD_BYTES: int = Field(default=50 * 1024 * 1024, description="Max file upload size in bytes")
    CHUNK_SIZE: int = Field(default=1000, description="Chunk size in estimated tokens")
    CHUNK_OVERLAP: int = Field(default=200, description="Chunk overlap in estimated tokens")

    # Account lifecycle
    DELETION_GRACE_DAYS: int = Field(default=30, description="Days before a scheduled deletion runs")
    INVITATION_EXPIRY_DAYS: int = Field(default=7, description="Days an invitation stays valid")

    @property
    def exempt_users(self) -> list[str]:
        return [u.strip() for u in self.RATE_LIMIT_EXEMPT_USERS.split(",") if u.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
