"""
Service configuration.

Values come from the process environment (a local ``.env`` file is loaded
first). Business logic receives a ``Settings`` instance explicitly instead of
reading ``os.environ`` itself.
"""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TIMEOUT_SECONDS = 90.0


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_MODEL
    request_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    upstream_max_retries: int = 0
    upstream_retry_backoff_seconds: float = 1.0
    job_store_backend: str = "memory"  # "memory" | "sqlite"
    job_store_path: str = "data/jobs.db"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"
    log_json: bool = True
    max_image_bytes: int = 8 * 1024 * 1024
    max_clinical_history_chars: int = 5000

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", DEFAULT_MODEL),
            request_timeout_seconds=float(os.getenv("GEMINI_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)),
            upstream_max_retries=max(0, int(os.getenv("UPSTREAM_MAX_RETRIES", "0"))),
            upstream_retry_backoff_seconds=float(os.getenv("UPSTREAM_RETRY_BACKOFF_SECONDS", "1.0")),
            job_store_backend=os.getenv("JOB_STORE_BACKEND", "memory").lower(),
            job_store_path=os.getenv("JOB_STORE_PATH", "data/jobs.db"),
            cors_origins=_env_list("CORS_ORIGINS", ["http://localhost:3000"]),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON", True),
            max_image_bytes=int(os.getenv("MAX_IMAGE_BYTES", str(8 * 1024 * 1024))),
            max_clinical_history_chars=int(os.getenv("MAX_CLINICAL_HISTORY_CHARS", "5000")),
        )

    @property
    def api_key_configured(self) -> bool:
        return bool(self.gemini_api_key)

    def require_api_key(self) -> str:
        """Return the Gemini API key or fail before any network call is made."""
        if not self.gemini_api_key:
            raise ConfigurationError("API key not configured.")
        return self.gemini_api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
