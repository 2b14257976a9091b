"""
Request and response models for the REST API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .llm_providers import ALL_PROVIDERS, ChatMessage

USERNAME_PATTERN = r"^[A-Za-z0-9_]{3,30}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


def _check_provider(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in ALL_PROVIDERS:
        raise ValueError(f"provider must be one of: {', '.join(ALL_PROVIDERS)}")
    return value


ProviderName = Annotated[Optional[str], AfterValidator(_check_provider)]


class PatchModel(BaseModel):
    """Partial update. Fields listed in `not_null` may be omitted but never sent as null."""

    not_null: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _reject_nulls(self):
        nulls = [f for f in self.not_null if f in self.model_fields_set and getattr(self, f) is None]
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self


# -- auth / users ------------------------------------------------------------


class RegisterRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    username: str = Field(pattern=USERNAME_PATTERN)
    password: str = Field(min_length=8, max_length=128)
    name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginRequest(BaseModel):
    """Either `email` or `username` identifies the account."""

    email: Optional[str] = None
    username: Optional[str] = None
    password: str = Field(min_length=1)

    @model_validator(mode="after")
    def _require_identifier(self) -> "LoginRequest":
        if not (self.email or self.username):
            raise ValueError("email or username is required")
        return self


class RefreshRequest(BaseModel):
    refresh_token: str


class ProfileUpdate(PatchModel):
    not_null = ("username", "email")

    name: Optional[str] = Field(default=None, max_length=100)
    username: Optional[str] = Field(default=None, pattern=USERNAME_PATTERN)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=128)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    username: str
    name: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    last_login_at: Optional[datetime] = None


class PublicUserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    name: Optional[str] = None
    created_at: datetime


# -- projects ----------------------------------------------------------------


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: str = Field(default="#3B82F6", pattern=COLOR_PATTERN)
    tags: List[str] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    is_public: bool = False


class ProjectUpdate(PatchModel):
    not_null = ("name", "color", "tags", "settings", "is_public", "status")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)
    tags: Optional[List[str]] = None
    settings: Optional[Dict[str, Any]] = None
    is_public: Optional[bool] = None
    status: Optional[Literal["active", "archived"]] = None


class ProjectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str
    slug: str
    description: Optional[str] = None
    color: str
    tags: List[str] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    status: str
    is_public: bool
    created_at: datetime
    updated_at: datetime


# -- conversations / messages ------------------------------------------------


class ConversationCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    project_id: Optional[str] = None
    ai_provider: ProviderName = None
    model_name: Optional[str] = None
    system_prompt: Optional[str] = Field(default=None, max_length=10000)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConversationUpdate(PatchModel):
    not_null = ("title", "ai_provider", "status")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    project_id: Optional[str] = None
    ai_provider: ProviderName = None
    model_name: Optional[str] = None
    system_prompt: Optional[str] = Field(default=None, max_length=10000)
    status: Optional[Literal["active", "archived"]] = None
    metadata: Optional[Dict[str, Any]] = None


class MessageCreate(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str = Field(min_length=1, max_length=10000)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    user_id: str
    role: str
    content: str
    status: str
    token_count: Optional[int] = None
    position: int
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime
    updated_at: datetime


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    project_id: Optional[str] = None
    title: str
    slug: str
    description: Optional[str] = None
    ai_provider: str
    model_name: Optional[str] = None
    system_prompt: Optional[str] = None
    status: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime
    updated_at: datetime


# -- AI ----------------------------------------------------------------------


class SettingsOverride(BaseModel):
    """Per-request generation settings; unset fields use the runtime defaults."""

    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=1, le=8000)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    top_k: Optional[int] = Field(default=None, ge=1, le=100)
    stop_sequences: Optional[List[str]] = None
    seed: Optional[int] = None


class ChatRequest(BaseModel):
    conversation_id: str
    message: str = Field(min_length=1, max_length=10000)
    provider: ProviderName = None
    model: Optional[str] = None
    system_prompt: Optional[str] = Field(default=None, max_length=10000)
    settings: SettingsOverride = Field(default_factory=SettingsOverride)
    stream: bool = False


class RegenerateRequest(BaseModel):
    provider: ProviderName = None
    model: Optional[str] = None
    settings: SettingsOverride = Field(default_factory=SettingsOverride)


class CompleteRequest(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1)
    provider: ProviderName = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    is_mobile: bool = False
    settings: SettingsOverride = Field(default_factory=SettingsOverride)


class AISettingsUpdate(BaseModel):
    default_provider: ProviderName = None
    default_model: Optional[str] = None
    fallback_provider: ProviderName = None
    simulated_fallback: Optional[bool] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=1, le=8000)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)


# -- files -------------------------------------------------------------------


class FileUpdate(PatchModel):
    not_null = ("original_name",)

    original_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    project_id: Optional[str] = None


class FileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    project_id: Optional[str] = None
    original_name: str
    mime_type: str
    extension: str
    size: int
    category: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime
