"""Application configuration using pydantic-settings."""

import warnings
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


# Sentinel value that indicates an unconfigured credential
_UNCONFIGURED_API_KEY = ""

# Find .env file: check backend dir first, then project root
_BACKEND_DIR = Path(__file__).parent.parent
_PROJECT_ROOT = _BACKEND_DIR.parent
_ENV_FILE = _BACKEND_DIR / ".env" if (_BACKEND_DIR / ".env").exists() else _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The diagnostics provider needs OPENAI_API_KEY. Everything else has a
    working default so the result ledger can run without any credentials.
    """

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OpenAI (diagnostics provider)
    openai_api_key: str = _UNCONFIGURED_API_KEY
    diagnostics_model: str = "gpt-5-mini"
    diagnostics_max_output_tokens: int = 8192

    # Diagnostics assistant scheduling
    analysis_quiet_period_seconds: float = 1.5
    analysis_timeout_seconds: float = 30.0

    # Optional JSON test catalog; the bundled catalog is used when unset
    catalog_path: Path | None = None

    # Application
    cors_origins: str = "http://localhost:3000"
    log_level: str = "INFO"
    debug: bool = False

    def model_post_init(self, __context) -> None:
        """Warn about unconfigured credentials and unusable timings."""
        if self.openai_api_key == _UNCONFIGURED_API_KEY:
            warnings.warn(
                "OPENAI_API_KEY not configured! Diagnostics analysis will be unavailable.",
                UserWarning,
                stacklevel=2,
            )
        if self.analysis_quiet_period_seconds < 0:
            raise ValueError("ANALYSIS_QUIET_PERIOD_SECONDS must not be negative")
        if self.analysis_timeout_seconds <= 0:
            raise ValueError("ANALYSIS_TIMEOUT_SECONDS must be positive")


settings = Settings()
