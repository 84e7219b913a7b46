"""Configuration loader: environment variables, optional YAML overlay, Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful, accurate, and friendly AI assistant. You provide clear, "
    "concise, and conversational answers. Be professional yet approachable."
)


class PerplexityConfig(BaseModel):
    api_key: str = ""
    base_url: str = "https://api.perplexity.ai"
    timeout: int = 120
    max_retries: int = 3
    retry_delay_ms: int = 1000
    return_citations: bool = False


class AIConfig(BaseModel):
    model: str = "sonar-pro"
    temperature: float = 0.7
    max_tokens: int = 4096
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


class TelegramConfig(BaseModel):
    enabled: bool = True
    token: str = ""


class WhatsAppConfig(BaseModel):
    enabled: bool = False
    access_token: str = ""
    phone_number_id: str = ""
    verify_token: str = ""
    api_url: str = "https://graph.facebook.com/v19.0"


class RedisConfig(BaseModel):
    enabled: bool = False
    host: str = "localhost"
    port: int = 6379
    password: str = ""
    db: int = 0


class SecurityConfig(BaseModel):
    rate_limit_requests: int = 20
    rate_limit_window_seconds: int = 60
    admin_user_ids: list[str] = Field(default_factory=list)
    whitelist_enabled: bool = False
    whitelisted_user_ids: list[str] = Field(default_factory=list)
    admin_api_key: str = ""


class SessionConfig(BaseModel):
    max_conversation_history: int = Field(20, ge=1)
    timeout_seconds: int = 86400
    cleanup_interval_seconds: int = 60


class LoggingConfig(BaseModel):
    level: str = "INFO"
    conversations: bool = False
    file_path: str = "./logs/app.log"


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000


class AppConfig(BaseModel):
    env: str = "development"
    data_dir: str = "./data"
    perplexity: PerplexityConfig = Field(default_factory=PerplexityConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        value = os.environ.get(match.group(1))
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "1")


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _parse_list(value: str | None) -> list[str]:
    """Parse a comma-separated string into a list, dropping blanks."""
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _load_yaml_overlay(config_path: Path) -> dict[str, str]:
    """Read a flat ``VAR: value`` YAML mapping, interpolating ${VAR} references."""
    if not config_path.exists():
        return {}
    raw_text = _interpolate_env_vars(config_path.read_text(encoding="utf-8"))
    data = yaml.safe_load(raw_text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")
    return {str(k): str(v) for k, v in data.items() if v is not None}


def build_config(source: Mapping[str, str]) -> AppConfig:
    """Build an AppConfig from a flat mapping of environment-style variables."""
    get = source.get
    defaults_ai = AIConfig()
    defaults_sec = SecurityConfig()
    defaults_sess = SessionConfig()

    return AppConfig(
        env=get("APP_ENV", "development"),
        data_dir=get("DATA_DIR", "./data"),
        perplexity=PerplexityConfig(
            api_key=get("PERPLEXITY_API_KEY", ""),
            base_url=get("PERPLEXITY_BASE_URL", "https://api.perplexity.ai"),
            return_citations=_parse_bool(get("RETURN_CITATIONS"), False),
        ),
        ai=AIConfig(
            model=get("PERPLEXITY_DEFAULT_MODEL") or defaults_ai.model,
            temperature=_parse_float(get("PERPLEXITY_DEFAULT_TEMPERATURE"), defaults_ai.temperature),
            max_tokens=_parse_int(get("PERPLEXITY_DEFAULT_MAX_TOKENS"), defaults_ai.max_tokens),
            system_prompt=get("DEFAULT_SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT,
        ),
        telegram=TelegramConfig(
            enabled=_parse_bool(get("TELEGRAM_ENABLED"), True),
            token=get("TELEGRAM_BOT_TOKEN", ""),
        ),
        whatsapp=WhatsAppConfig(
            enabled=_parse_bool(get("WHATSAPP_ENABLED"), False),
            access_token=get("WHATSAPP_ACCESS_TOKEN", ""),
            phone_number_id=get("WHATSAPP_PHONE_NUMBER_ID", ""),
            verify_token=get("WHATSAPP_VERIFY_TOKEN", ""),
            api_url=get("WHATSAPP_API_URL") or WhatsAppConfig().api_url,
        ),
        redis=RedisConfig(
            enabled=_parse_bool(get("REDIS_ENABLED"), False),
            host=get("REDIS_HOST") or "localhost",
            port=_parse_int(get("REDIS_PORT"), 6379),
            password=get("REDIS_PASSWORD", ""),
            db=_parse_int(get("REDIS_DB"), 0),
        ),
        security=SecurityConfig(
            rate_limit_requests=_parse_int(get("RATE_LIMIT_REQUESTS"), defaults_sec.rate_limit_requests),
            rate_limit_window_seconds=_parse_int(
                get("RATE_LIMIT_WINDOW_SECONDS"), defaults_sec.rate_limit_window_seconds
            ),
            admin_user_ids=_parse_list(get("ADMIN_USER_IDS")),
            whitelist_enabled=_parse_bool(get("WHITELIST_ENABLED"), False),
            whitelisted_user_ids=_parse_list(get("WHITELISTED_USER_IDS")),
            admin_api_key=get("ADMIN_API_KEY", ""),
        ),
        session=SessionConfig(
            max_conversation_history=_parse_int(
                get("MAX_CONVERSATION_HISTORY"), defaults_sess.max_conversation_history
            ),
            timeout_seconds=_parse_int(get("SESSION_TIMEOUT_SECONDS"), defaults_sess.timeout_seconds),
        ),
        logging=LoggingConfig(
            level=get("LOG_LEVEL") or "INFO",
            conversations=_parse_bool(get("LOG_CONVERSATIONS"), False),
            file_path=get("LOG_FILE_PATH") or "./logs/app.log",
        ),
        server=ServerConfig(
            port=_parse_int(get("SERVER_PORT"), 3000),
        ),
    )


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load configuration from the environment, a .env file and an optional YAML overlay.

    Environment variables win over the YAML file; the YAML file only supplies
    variables that are not set in the environment.
    """
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    source: dict[str, Any] = _load_yaml_overlay(Path(config_path))
    source.update(os.environ)
    return build_config(source)


def validate_for_production(config: AppConfig) -> list[str]:
    """Return a list of configuration problems that block a production start."""
    errors: list[str] = []

    api_key = config.perplexity.api_key
    if not api_key or api_key.startswith("pplx-xxxx"):
        errors.append("PERPLEXITY_API_KEY is required and must be a valid API key")

    if not config.telegram.enabled and not config.whatsapp.enabled:
        errors.append("At least one platform (Telegram or WhatsApp) must be enabled")

    if config.telegram.enabled and (
        not config.telegram.token or config.telegram.token == "your-telegram-bot-token-here"
    ):
        errors.append("TELEGRAM_BOT_TOKEN is required when Telegram is enabled")

    if config.whatsapp.enabled and not (
        config.whatsapp.access_token and config.whatsapp.phone_number_id
    ):
        errors.append(
            "WHATSAPP_ACCESS_TOKEN and WHATSAPP_PHONE_NUMBER_ID are required when WhatsApp is enabled"
        )

    return errors
