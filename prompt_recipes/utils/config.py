"""Configuration management for the Prompt Recipes engine.

Loads environment variables from system environment and .env file.
Priority order: system environment > .env file > hardcoded defaults
"""

import os
from typing import Optional

from dotenv import load_dotenv


# Load .env file (if exists, silently continues if missing)
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Config:
    """Application configuration loaded from environment variables."""

    def __init__(self) -> None:
        """Initialize configuration from environment variables."""
        # Model Provider: "ollama" (on-device, default) or "gemini" (hosted)
        self.MODEL_PROVIDER: str = os.getenv("MODEL_PROVIDER", "ollama").lower()
        # Ollama server address. Default: local daemon on its standard port
        self.OLLAMA_HOST: str = os.getenv("OLLAMA_HOST", "http://127.0.0.1:11434")
        # Local model pulled on demand when missing. Default: gemma3:1b (small, multimodal-free)
        self.OLLAMA_MODEL: str = os.getenv("OLLAMA_MODEL", "gemma3:1b")
        # Gemini API key: required only when MODEL_PROVIDER=gemini
        self.GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
        self.GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite")

        # Sampling defaults applied when a call does not override them
        # Temperature: 0.0 = deterministic, 1.0 = max randomness
        self.TEMPERATURE: float = float(os.getenv("TEMPERATURE", "0.7"))
        self.TOP_K: int = int(os.getenv("TOP_K", "40"))

        # Execution deadline per attempt, in milliseconds. Default: 30s
        self.EXECUTION_TIMEOUT_MS: int = int(os.getenv("EXECUTION_TIMEOUT_MS", "30000"))
        # Retry Configuration - handles transient capability failures
        # MAX_RETRIES: retries after the first attempt (exponential backoff)
        self.MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
        # RETRY_BASE_DELAY_MS: first backoff delay, doubled on each retry
        self.RETRY_BASE_DELAY_MS: int = int(os.getenv("RETRY_BASE_DELAY_MS", "1000"))
        # RETRY_MAX_DELAY_MS: upper bound for a single backoff delay
        self.RETRY_MAX_DELAY_MS: int = int(os.getenv("RETRY_MAX_DELAY_MS", "10000"))
        # Seconds between availability polls while the model is downloading
        self.DOWNLOAD_POLL_INTERVAL: float = float(os.getenv("DOWNLOAD_POLL_INTERVAL", "1.0"))

        # Maximum number of execution records kept in memory. Default: 100
        self.MAX_HISTORY_ENTRIES: int = int(os.getenv("MAX_HISTORY_ENTRIES", "100"))
        # Maximum user input length after sanitization. Default: 10000 chars
        self.MAX_INPUT_LENGTH: int = int(os.getenv("MAX_INPUT_LENGTH", "10000"))

        # Maximum image size (in MB) accepted for multimodal recipes. Default: 5 MB
        self.MAX_IMAGE_SIZE_MB: int = int(os.getenv("MAX_IMAGE_SIZE_MB", "5"))
        # Image Compression: Enable/disable image compression before prompting
        self.COMPRESS_IMG: bool = _env_bool("COMPRESS_IMG", "true")
        # Image Compression Threshold: Only compress images above this size (in KB)
        self.COMPRESS_IMG_THRESHOLD_KB: int = int(os.getenv("COMPRESS_IMG_THRESHOLD_KB", "300"))

        # Recipe export read by the CLI (JSON array or {"recipes": [...], "guide": {...}})
        self.RECIPES_FILE: str = os.getenv("RECIPES_FILE", "recipes.json")
        # Optional path to a guide file overriding the guide stored with the recipes
        self.GUIDE_FILE: Optional[str] = os.getenv("GUIDE_FILE")

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            ValueError: If required API keys are missing or invalid values provided.
        """
        if self.MODEL_PROVIDER not in ("ollama", "gemini"):
            raise ValueError(
                f"MODEL_PROVIDER must be 'ollama' or 'gemini', got: {self.MODEL_PROVIDER}"
            )
        if self.MODEL_PROVIDER == "gemini" and not self.GEMINI_API_KEY:
            raise ValueError("GEMINI_API_KEY environment variable is required when MODEL_PROVIDER=gemini")
        if not (0.0 <= self.TEMPERATURE <= 2.0):
            raise ValueError(
                f"TEMPERATURE must be between 0.0 and 2.0, got: {self.TEMPERATURE}"
            )
        if self.TOP_K < 1:
            raise ValueError(f"TOP_K must be at least 1, got: {self.TOP_K}")
        if self.EXECUTION_TIMEOUT_MS < 1:
            raise ValueError(
                f"EXECUTION_TIMEOUT_MS must be positive, got: {self.EXECUTION_TIMEOUT_MS}"
            )
        if self.MAX_RETRIES < 0:
            raise ValueError(f"MAX_RETRIES must be at least 0, got: {self.MAX_RETRIES}")
        if self.RETRY_BASE_DELAY_MS < 0 or self.RETRY_MAX_DELAY_MS < self.RETRY_BASE_DELAY_MS:
            raise ValueError(
                "RETRY_BASE_DELAY_MS must be >= 0 and RETRY_MAX_DELAY_MS must be >= RETRY_BASE_DELAY_MS, "
                f"got: {self.RETRY_BASE_DELAY_MS}/{self.RETRY_MAX_DELAY_MS}"
            )
        if self.DOWNLOAD_POLL_INTERVAL <= 0:
            raise ValueError(
                f"DOWNLOAD_POLL_INTERVAL must be positive, got: {self.DOWNLOAD_POLL_INTERVAL}"
            )
        if self.MAX_HISTORY_ENTRIES < 1:
            raise ValueError(
                f"MAX_HISTORY_ENTRIES must be at least 1, got: {self.MAX_HISTORY_ENTRIES}"
            )
        if self.MAX_INPUT_LENGTH < 1:
            raise ValueError(f"MAX_INPUT_LENGTH must be at least 1, got: {self.MAX_INPUT_LENGTH}")


# Create module-level config instance and validate immediately
config = Config()
config.validate()
