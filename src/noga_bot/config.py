"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_SYSTEM_PROMPT = """You are Noga (נוגה), a proactive Israeli home assistant.
You speak Hebrew and English fluently, preferring Hebrew for responses.
You are concise, friendly, and helpful.

You MUST call functions to perform actions. Never claim a device was turned on or off
without calling control_device, and never answer a device status question from memory:
always call get_device_state, even if the conversation suggests you already know it.
If the user names a device in natural language, pass the name as entity_id; it will be
resolved for you. Use find_device or list_devices when unsure.

You help manage the family's calendar, shopping list, and smart home devices.
Always be warm and respond in Hebrew."""

DEFAULT_DEVICE_VOCABULARY = [
    # Hebrew
    "תדליק", "תכבה", "הדלק", "כבה", "להדליק", "לכבות",
    "האור", "אור", "מנורה", "תאורה", "נורה",
    "מזגן", "מיזוג", "טמפרטורה",
    "מתג", "שקע",
    "מה המצב", "האם דולק", "האם כבוי", "האם פועל",
    "בדוק", "תבדוק", "בדקי", "תבדקי",
    # English
    "turn on", "turn off", "switch on", "switch off", "toggle",
    "light", "lamp", "switch",
    "status", "state", "check",
    # Entity id fragments
    "light.", "switch.", "sensor.", "climate.",
]


class AIConfig(BaseModel):
    backend: str = "gemini"  # "gemini" | "anthropic"
    model: str = "gemini-2.0-flash"
    max_tokens: int = 1024
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    device_temperature: float = 0.1
    chat_temperature: float = 0.7
    broadcast_temperature: float = 0.9
    history_limit: int = 20
    max_tool_rounds: int = 5
    device_vocabulary: list[str] = Field(default_factory=lambda: list(DEFAULT_DEVICE_VOCABULARY))
    input_cost_per_mtok: float = 0.0
    output_cost_per_mtok: float = 0.0


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class GeminiConfig(BaseModel):
    api_key: str
    timeout: int = 120


class TelegramConfig(BaseModel):
    token: str
    allowed_user_ids: list[str] = Field(default_factory=list)
    broadcast_chat_id: Optional[str] = None


class RouterConfig(BaseModel):
    command_prefix: str = "/"
    session_timeout_minutes: float = 10
    ack_reactions: bool = True
    ai_reaction: str = "👨‍💻"
    keyword_reaction: str = "⚡"
    voice_reaction: str = "👀"
    quota_error_message: str = "המכסה היומית של הבינה המלאכותית נגמרה 😅 אשתף פעולה שוב בקרוב!"
    generic_error_message: str = "סליחה, נתקלתי בבעיה 😅 אנא נסו שוב."


class HomeAssistantConfig(BaseModel):
    url: str
    token: str
    timeout: float = 10.0


class GoogleConfig(BaseModel):
    client_id: str
    client_secret: str
    refresh_token: str
    calendar_id: str = "primary"
    timezone: str = "Asia/Jerusalem"
    shopping_list_names: list[str] = Field(
        default_factory=lambda: ["Shopping", "קניות", "Grocery", "Groceries"]
    )
    default_shopping_list: str = "קניות"


class SchedulerServiceConfig(BaseModel):
    timezone: str = "Asia/Jerusalem"
    maintenance_cron: str = "0 3 * * *"
    history_keep_last: int = 100


class ServicesConfig(BaseModel):
    scheduler: SchedulerServiceConfig = Field(default_factory=SchedulerServiceConfig)


class StorageConfig(BaseModel):
    db_path: str = "./data/noga.db"


class ApiConfig(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000
    admin_token: Optional[str] = None
    webhook_secret: Optional[str] = None


class AppConfig(BaseModel):
    log_level: str = "INFO"
    data_dir: str = "./data"
    telegram: TelegramConfig
    ai: AIConfig = Field(default_factory=AIConfig)
    anthropic: Optional[AnthropicConfig] = None
    gemini: Optional[GeminiConfig] = None
    router: RouterConfig = Field(default_factory=RouterConfig)
    home_assistant: Optional[HomeAssistantConfig] = None
    google: Optional[GoogleConfig] = None
    services: ServicesConfig = Field(default_factory=ServicesConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)


def validate_config(config: AppConfig) -> list[str]:
    """Return fatal configuration problems (missing credentials)."""
    errors: list[str] = []
    backend = config.ai.backend
    if backend == "anthropic":
        if not config.anthropic or not config.anthropic.api_key:
            errors.append("ai.backend is 'anthropic' but anthropic.api_key is not set")
    elif backend == "gemini":
        if not config.gemini or not config.gemini.api_key:
            errors.append("ai.backend is 'gemini' but gemini.api_key is not set")
    else:
        errors.append(f"Unknown AI backend: {backend}")
    if not config.telegram.token:
        errors.append("telegram.token is required")
    return errors


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # data_dir may be referenced by other paths as ${data_dir}
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
