from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


PACKAGE_DIR = Path(__file__).resolve().parent


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no", "off"}


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class AppConfig(BaseModel):
    """
    Service configuration, read from environment variables.

    A fresh instance is built per call to `load_config`, so values mirrored
    into the environment by the settings store are picked up without a
    restart.
    """

    app_env: str = Field(default_factory=lambda: os.getenv("APP_ENV", "development"))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    database_url: str = Field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./devai.db"),
        description="SQLAlchemy database URL (env: DATABASE_URL).",
    )
    redis_url: Optional[str] = Field(
        default_factory=lambda: os.getenv("REDIS_URL") or None,
        description="Redis URL for the shared cache. In-process cache when unset.",
    )

    allowed_origins: List[str] = Field(
        default_factory=lambda: _env_list("ALLOWED_ORIGINS")
        or [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )
    rate_limit_enabled: bool = Field(default_factory=lambda: _env_bool("RATE_LIMIT_ENABLED", "true"))
    settings_admins: List[str] = Field(
        default_factory=lambda: _env_list("SETTINGS_ADMINS"),
        description="Usernames allowed to change runtime AI settings. Any signed-in user when empty.",
    )

    jwt_secret: str = Field(
        default_factory=lambda: os.getenv("JWT_SECRET", "fallback-secret-change-in-production")
    )
    jwt_refresh_secret: str = Field(
        default_factory=lambda: os.getenv("JWT_REFRESH_SECRET", "fallback-refresh-secret")
    )
    jwt_expires_minutes: int = Field(
        default_factory=lambda: int(os.getenv("JWT_EXPIRES_MINUTES", str(7 * 24 * 60))),
        ge=1,
    )
    jwt_refresh_expires_minutes: int = Field(
        default_factory=lambda: int(os.getenv("JWT_REFRESH_EXPIRES_MINUTES", str(30 * 24 * 60))),
        ge=1,
    )
    bcrypt_rounds: int = Field(default_factory=lambda: int(os.getenv("BCRYPT_ROUNDS", "12")), ge=4, le=16)

    upload_dir: str = Field(
        default_factory=lambda: os.getenv("UPLOAD_DIR", str(PACKAGE_DIR.parent / "uploads"))
    )
    max_upload_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024))),
        ge=1,
    )

    ai_requests_per_minute: int = Field(
        default_factory=lambda: int(os.getenv("AI_REQUESTS_PER_MINUTE", "20")),
        ge=1,
        description="Per-user, per-provider AI requests allowed per minute.",
    )
    ai_retry_attempts: int = Field(
        default_factory=lambda: int(os.getenv("AI_RETRY_ATTEMPTS", "3")),
        ge=1,
        le=10,
    )
    ai_retry_delay: float = Field(
        default_factory=lambda: float(os.getenv("AI_RETRY_DELAY", "1.0")),
        ge=0,
    )
    ai_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("AI_TIMEOUT_SECONDS", "60")),
        gt=0,
    )

    gemini_api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("GEMINI_API_KEY") or None,
        description="API key for Google Gemini (env: GEMINI_API_KEY).",
    )
    gemini_api_base: str = Field(
        default_factory=lambda: os.getenv(
            "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
        )
    )
    groq_api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("GROQ_API_KEY") or None,
        description="API key for Groq (env: GROQ_API_KEY).",
    )
    groq_api_base: str = Field(
        default_factory=lambda: os.getenv("GROQ_API_BASE", "https://api.groq.com/openai/v1")
    )
    huggingface_api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("HUGGINGFACE_API_KEY") or None,
        description="API token for the HuggingFace Inference API (env: HUGGINGFACE_API_KEY).",
    )
    huggingface_api_base: str = Field(
        default_factory=lambda: os.getenv(
            "HUGGINGFACE_API_BASE", "https://api-inference.huggingface.co"
        )
    )
    ollama_base_url: Optional[str] = Field(
        default_factory=lambda: os.getenv("OLLAMA_BASE_URL") or None,
        description="Ollama daemon URL (env: OLLAMA_BASE_URL). Ollama is disabled when unset.",
    )

    def provider_api_key(self, provider: str) -> Optional[str]:
        return {
            "gemini": self.gemini_api_key,
            "groq": self.groq_api_key,
            "huggingface": self.huggingface_api_key,
        }.get(provider)


def load_config(overrides: Optional[Dict[str, Any]] = None) -> AppConfig:
    """
    Build an AppConfig from environment variables plus optional overrides.

    Overrides with a value of None are ignored so callers can pass request
    fields straight through.
    """
    data: Dict[str, Any] = {}
    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})
    return AppConfig(**data)
