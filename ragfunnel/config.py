"""Configuration management for the ragfunnel retrieval engine."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Engine configuration loaded from environment variables."""

    # Provider Configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get OpenAI API key from environment variables.

        Returns:
            OpenAI API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")
    OLLAMA_BASE_URL: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    AI_PROVIDER: str = os.getenv("AI_PROVIDER", "openai").lower()
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4o-mini")
    PROVIDER_TIMEOUT: float = float(os.getenv("PROVIDER_TIMEOUT", "30"))

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Storage Configuration
    CONTENT_DB_PATH: Path = Path(os.getenv("CONTENT_DB_PATH", "data/content.db"))
    VECTOR_MAX_CANDIDATES: int = int(os.getenv("VECTOR_MAX_CANDIDATES", "10000"))

    # Hybrid Search Configuration
    SEARCH_DEFAULT_LIMIT: int = int(os.getenv("SEARCH_DEFAULT_LIMIT", "10"))
    HYBRID_SEMANTIC_WEIGHT: float = float(os.getenv("HYBRID_SEMANTIC_WEIGHT", "0.7"))
    HYBRID_KEYWORD_WEIGHT: float = float(os.getenv("HYBRID_KEYWORD_WEIGHT", "0.3"))
    HYBRID_MIN_KEYWORD_SCORE: float = float(
        os.getenv("HYBRID_MIN_KEYWORD_SCORE", "0.1")
    )
    HYBRID_RRF_K: int = int(os.getenv("HYBRID_RRF_K", "60"))
    HYBRID_PARALLEL_PASSES: bool = _env_bool("HYBRID_PARALLEL_PASSES", "true")

    # Reranker Configuration
    RERANK_LIMIT: int = int(os.getenv("RERANK_LIMIT", "20"))
    RERANK_OUTPUT_LIMIT: int = int(os.getenv("RERANK_OUTPUT_LIMIT", "10"))
    RERANK_MAX_WORKERS: int = int(os.getenv("RERANK_MAX_WORKERS", "4"))
    RERANK_CACHE_TTL: int = int(os.getenv("RERANK_CACHE_TTL", "3600"))

    # Context Assembly Configuration
    CONTEXT_DEFAULT_WINDOW: int = int(os.getenv("CONTEXT_DEFAULT_WINDOW", "8192"))
    CONTEXT_RESERVE_SYSTEM_TOKENS: int = int(
        os.getenv("CONTEXT_RESERVE_SYSTEM_TOKENS", "200")
    )
    CONTEXT_RESERVE_RESPONSE_TOKENS: int = int(
        os.getenv("CONTEXT_RESERVE_RESPONSE_TOKENS", "1000")
    )
    CONTEXT_RESERVE_OVERHEAD_TOKENS: int = int(
        os.getenv("CONTEXT_RESERVE_OVERHEAD_TOKENS", "100")
    )
    CONTEXT_MAX_CHUNKS: int = int(os.getenv("CONTEXT_MAX_CHUNKS", "10"))

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "ragfunnel/1.0")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values.

        Raises:
            ValueError: If the configured provider needs credentials that are
                missing, or if the provider name is unknown.
        """
        if cls.AI_PROVIDER not in {"openai", "ollama"}:
            msg = f"Unsupported AI_PROVIDER: {cls.AI_PROVIDER}"
            raise ValueError(msg)
        if cls.AI_PROVIDER == "openai" and not cls.get_openai_api_key():
            msg = (
                "OPENAI_API_KEY is required. Please set it in .env file or environment."
            )
            raise ValueError(msg)

    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development environment.

        Returns:
            True if environment is development.
        """
        return cls.ENVIRONMENT.lower() == "development"

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment.

        Returns:
            True if environment is production.
        """
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        # Provider SDKs are chatty at INFO; keep them at their own level
        provider_level = getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        logging.getLogger("openai").setLevel(provider_level)
        logging.getLogger("httpx").setLevel(provider_level)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Build default headers for outbound provider calls.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        return headers


config = Config()
