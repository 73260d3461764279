from __future__ import annotations

import os
from enum import Enum
from typing import Any, List

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from wessley.logging import get_logger

logger = get_logger(__name__)


class Environment(str, Enum):
    """Deployment environments; production flips rate limiting to fail closed."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings resolved from the process environment and ``.env``."""

    app_env: Environment = env_field(Environment.DEVELOPMENT, "APP_ENV")
    app_url: str = env_field("https://wessley.ai", "APP_URL")
    app_version: str = env_field("1.0.0", "APP_VERSION")
    database_url: str = env_field("postgresql://localhost:5432/wessley", "DATABASE_URL")
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic test behaviour; allows runtime resets.",
    )
    cors_allow_origins: List[str] = env_field([], "CORS_ALLOW_ORIGINS")

    # Supabase auth
    supabase_url: str | None = env_field(None, "SUPABASE_URL")
    supabase_anon_key: str | None = env_field(None, "SUPABASE_ANON_KEY")
    supabase_jwt_secret: str | None = env_field(None, "SUPABASE_JWT_SECRET")
    jwt_audience: str = env_field("authenticated", "JWT_AUDIENCE")

    # OpenAI
    openai_api_key: str | None = env_field(None, "OPENAI_API_KEY")
    openai_base_url: str | None = env_field(None, "OPENAI_BASE_URL")
    chat_model: str = env_field("gpt-4-turbo", "CHAT_MODEL")
    onboarding_model: str = env_field("gpt-5.1-chat-latest", "ONBOARDING_MODEL")
    messages_model: str = env_field("gpt-5.1-chat-latest", "MESSAGES_MODEL")
    title_model: str = env_field("gpt-4", "TITLE_MODEL")

    # Stripe
    stripe_secret_key: str | None = env_field(None, "STRIPE_SECRET_KEY")
    stripe_webhook_secret: str | None = env_field(None, "STRIPE_WEBHOOK_SECRET")
    stripe_price_insiders: str | None = env_field(None, "STRIPE_PRICE_INSIDERS")
    stripe_price_pro: str | None = env_field(None, "STRIPE_PRICE_PRO")
    stripe_price_enterprise: str | None = env_field(None, "STRIPE_PRICE_ENTERPRISE")

    # Transactional email
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str = env_field("noreply@wessley.ai", "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Wessley", "EMAIL_FROM_NAME")

    # Waitlist
    beehiiv_api_key: str | None = env_field(None, "BEEHIIV_API_KEY")
    beehiiv_publication_id: str | None = env_field(None, "BEEHIIV_PUBLICATION_ID")

    # Upstream service cluster
    semantic_service_url: str = env_field("http://localhost:8003", "SEMANTIC_SERVICE_URL")
    ingestion_service_url: str = env_field("http://localhost:8080", "INGESTION_SERVICE_URL")
    graph_service_url: str = env_field("http://localhost:8002", "GRAPH_SERVICE_URL")
    learning_service_url: str = env_field("http://localhost:8000", "LEARNING_SERVICE_URL")
    model_3d_service_url: str = env_field("http://localhost:3001", "MODEL_3D_SERVICE_URL")
    netlistify_url: str = env_field("http://localhost:8000", "NETLISTIFY_URL")

    scene_components_path: str | None = env_field(
        None,
        "SCENE_COMPONENTS_PATH",
        description="NDJSON export of the 3D scene used in onboarding prompts",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("app_env", mode="before")
    @classmethod
    def _validate_env(cls, value: Any) -> Environment:
        if isinstance(value, str):
            value = value.strip().lower()
        return Environment(value)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value or []

    @field_validator("redis_url", mode="before")
    @classmethod
    def _blank_redis_url(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
