"""Configuration management for the Ansar RAG core."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI Configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get OpenAI API key from environment variables.

        Returns:
            OpenAI API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")

    # Anthropic Configuration
    @classmethod
    def get_anthropic_api_key(cls) -> str:
        """Get Anthropic API key from environment variables.

        Returns:
            Anthropic API key from environment or empty string if not set.
        """
        return os.getenv("ANTHROPIC_API_KEY", "")

    ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Embedding Configuration
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_MAX_CHARS: int = int(os.getenv("EMBEDDING_MAX_CHARS", "8000"))
    EMBEDDING_CACHE_SIZE: int = int(os.getenv("EMBEDDING_CACHE_SIZE", "100"))

    # Chat Model Configuration
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4o-mini")
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "1500"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.5"))
    LIST_TEMPERATURE: float = float(os.getenv("LIST_TEMPERATURE", "0.3"))
    LLM_MAX_RETRIES: int = int(os.getenv("LLM_MAX_RETRIES", "1"))
    LLM_RETRY_DELAY: float = float(os.getenv("LLM_RETRY_DELAY", "0.8"))

    # Retrieval Configuration
    CACHE_SIMILARITY: float = float(os.getenv("CACHE_SIMILARITY", "0.95"))
    SOURCE_SIMILARITY: float = float(os.getenv("SOURCE_SIMILARITY", "0.60"))
    MAX_SOURCES: int = int(os.getenv("MAX_SOURCES", "5"))
    SOURCE_MIN_GRADE: str = os.getenv("SOURCE_MIN_GRADE", "hasan")

    # Semantic Cache TTL Configuration
    CACHE_TTL_HIGH_DAYS: int = int(os.getenv("CACHE_TTL_HIGH_DAYS", "30"))
    CACHE_TTL_DEFAULT_DAYS: int = int(os.getenv("CACHE_TTL_DEFAULT_DAYS", "7"))

    # Timeouts (seconds)
    EMBEDDING_TIMEOUT: float = float(os.getenv("EMBEDDING_TIMEOUT", "10"))
    CACHE_TIMEOUT: float = float(os.getenv("CACHE_TIMEOUT", "5"))
    SEARCH_TIMEOUT: float = float(os.getenv("SEARCH_TIMEOUT", "8"))
    LLM_TIMEOUT: float = float(os.getenv("LLM_TIMEOUT", "60"))

    # Document Store Configuration
    DOCUMENT_STORE_BACKEND: str = os.getenv("DOCUMENT_STORE_BACKEND", "sqlite").lower()
    DOCUMENT_STORE_DB_PATH: Path = Path(
        os.getenv("DOCUMENT_STORE_DB_PATH", "data/ansar.db")
    )

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "Ansar/1.0")
    API_TEST_HEADER_NAME: str | None = os.getenv("API_TEST_HEADER_NAME")
    API_TEST_HEADER_VALUE: str | None = os.getenv("API_TEST_HEADER_VALUE")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values.

        Raises:
            ValueError: If OPENAI_API_KEY is not set.
        """
        if not cls.get_openai_api_key():
            msg = (
                "OPENAI_API_KEY is required. Please set it in .env file or environment."
            )
            raise ValueError(msg)

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at host application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        third_party_level = getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        for name in ("anthropic", "openai", "httpx"):
            logging.getLogger(name).setLevel(third_party_level)

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
        """Build default headers for outbound API calls.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        if cls.API_TEST_HEADER_NAME and cls.API_TEST_HEADER_VALUE:
            headers[cls.API_TEST_HEADER_NAME] = cls.API_TEST_HEADER_VALUE

        return headers


config = Config()
