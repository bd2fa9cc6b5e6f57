# app/core/config.py
"""
Application configuration using Pydantic Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import json
from pydantic import field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """

    # Application
    APP_NAME: str = "Evidence Review"
    DEBUG: bool = True

    # Database
    DATABASE_URL: str

    # Supabase (auth + storage)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    SUPABASE_JWT_SECRET: str = ""
    SUPABASE_JWT_AUDIENCE: str = "authenticated"
    JWT_ALGORITHM: str = "HS256"

    # Evidence storage (S3-compatible endpoint of the Supabase bucket)
    STORAGE_ENDPOINT_URL: str = ""
    STORAGE_REGION: str = "us-east-1"
    STORAGE_ACCESS_KEY_ID: str = ""
    STORAGE_SECRET_ACCESS_KEY: str = ""
    EVIDENCE_BUCKET: str = "evidence-files"

    # OpenAI
    OPENAI_API_KEY: str = ""
    OPENAI_ASSISTANT_MODEL: str = "gpt-4o"
    OPENAI_CHAT_MODEL: str = "gpt-4o"
    OPENAI_RUN_POLL_INITIAL_SECONDS: float = 1.0
    OPENAI_RUN_POLL_MAX_SECONDS: float = 8.0
    OPENAI_RUN_TIMEOUT_SECONDS: float = 300.0

    # Google Gemini
    GOOGLE_GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-pro"
    GEMINI_MAX_OUTPUT_TOKENS: int = 2048
    GEMINI_MAX_RETRIES: int = 3
    GEMINI_RETRY_INITIAL_DELAY_SECONDS: float = 5.0

    @field_validator("GEMINI_MODEL", "OPENAI_ASSISTANT_MODEL", "OPENAI_CHAT_MODEL", mode="before")
    @classmethod
    def strip_model_id(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip()
        return v

    # Google Custom Search (web_search tool)
    GOOGLE_SEARCH_API_KEY: str = ""
    GOOGLE_SEARCH_ENGINE_ID: str = ""
    GOOGLE_SEARCH_URL: str = "https://www.googleapis.com/customsearch/v1"
    WEB_SEARCH_TIMEOUT_SECONDS: int = 20

    # Neo4j knowledge graph
    NEO4J_URI: str = ""
    NEO4J_USERNAME: str = ""
    NEO4J_PASSWORD: str = ""
    NEO4J_DATABASE: str = "neo4j"
    GRAPH_TEXT_MAX_CHARS: int = 50000

    # Evidence processing
    TIMELINE_MAX_EVENTS: int = 100
    CATEGORIZER_SNIPPET_CHARS: int = 4000
    SUMMARIZER_SNIPPET_CHARS: int = 8000

    # Activity stream (SSE)
    ACTIVITY_STREAM_POLL_SECONDS: float = 2.0
    ACTIVITY_STREAM_LOOKBACK_SECONDS: float = 30.0
    ACTIVITY_STREAM_PAGE_SIZE: int = 200

    # CORS
    CORS_ORIGINS: str = '["*"]'

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from string to list"""
        try:
            if isinstance(self.CORS_ORIGINS, str):
                return json.loads(self.CORS_ORIGINS)
            return self.CORS_ORIGINS
        except json.JSONDecodeError:
            return ["*"]


# Create settings instance
settings = Settings()
