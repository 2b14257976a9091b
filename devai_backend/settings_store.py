import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

_current_settings: Optional["AISettings"] = None


def settings_path() -> Path:
    return Path(
        os.getenv("DEVAI_SETTINGS_PATH", str(Path(__file__).resolve().parent / "settings.json"))
    )


class AISettings(BaseModel):
    """
    Provider defaults and generation parameters editable at runtime.

    Every change is copied into os.environ as well, so a freshly built
    AppConfig sees it with no restart.
    """

    default_provider: str = Field(default_factory=lambda: os.getenv("AI_DEFAULT_PROVIDER", "gemini"))
    default_model: Optional[str] = Field(default_factory=lambda: os.getenv("AI_DEFAULT_MODEL") or None)
    fallback_provider: Optional[str] = Field(
        default_factory=lambda: os.getenv("AI_FALLBACK_PROVIDER", "gemini") or None
    )
    simulated_fallback: bool = Field(
        default_factory=lambda: os.getenv("AI_SIMULATED_FALLBACK", "true").lower() != "false"
    )
    temperature: float = Field(default_factory=lambda: float(os.getenv("AI_TEMPERATURE", "0.7")), ge=0, le=2)
    max_tokens: int = Field(default_factory=lambda: int(os.getenv("AI_MAX_TOKENS", "2048")), ge=1, le=8000)
    top_p: float = Field(default_factory=lambda: float(os.getenv("AI_TOP_P", "0.9")), ge=0, le=1)


def _apply_to_env(settings: AISettings) -> None:
    """
    Mirror settings into os.environ so that a freshly built AppConfig sees
    the updated values.
    """
    os.environ["AI_DEFAULT_PROVIDER"] = settings.default_provider
    os.environ["AI_DEFAULT_MODEL"] = settings.default_model or ""
    os.environ["AI_FALLBACK_PROVIDER"] = settings.fallback_provider or ""
    os.environ["AI_SIMULATED_FALLBACK"] = "true" if settings.simulated_fallback else "false"
    os.environ["AI_TEMPERATURE"] = str(settings.temperature)
    os.environ["AI_MAX_TOKENS"] = str(settings.max_tokens)
    os.environ["AI_TOP_P"] = str(settings.top_p)


def load_settings() -> AISettings:
    """Read the settings file, falling back to env defaults, and export the result."""
    global _current_settings
    base = AISettings()
    path = settings_path()
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            # file values win over env defaults
            base = AISettings(**{**base.model_dump(), **raw})
        except (ValueError, TypeError, ValidationError) as exc:
            logger.warning("[SETTINGS] Ignoring unreadable settings file %s: %s", path, exc)
    _apply_to_env(base)
    _current_settings = base
    return base


def get_settings() -> AISettings:
    global _current_settings
    if _current_settings is None:
        return load_settings()
    return _current_settings


def update_settings(patch: dict[str, Any]) -> AISettings:
    """Apply a partial patch, write it to the settings file and export it."""
    global _current_settings
    current = get_settings()
    updated = AISettings(**{**current.model_dump(), **patch})
    settings_path().write_text(updated.model_dump_json(indent=2), encoding="utf-8")
    _apply_to_env(updated)
    _current_settings = updated
    logger.info("[SETTINGS] Updated: %s", ", ".join(sorted(patch)))
    return updated


def reset_settings() -> None:
    global _current_settings
    _current_settings = None
