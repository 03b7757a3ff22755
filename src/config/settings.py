"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LOG_EVENT_TYPES = [
    "error",
    "response.content.done",
    "rate_limits.updated",
    "response.done",
    "input_audio_buffer.committed",
    "input_audio_buffer.speech_stopped",
    "input_audio_buffer.speech_started",
    "session.created",
    "session.updated",
]


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO")
    port: int = Field(default=5050)

    # Realtime model transport
    openai_api_key: str | None = Field(default=None)
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    realtime_model: str = Field(default="gpt-4o-mini-realtime-preview-2024-12-17")
    realtime_voice: str = Field(default="shimmer")
    realtime_temperature: float = Field(default=0.6, ge=0.0, le=2.0)
    session_update_delay_ms: int = Field(
        default=100,
        ge=0,
        description="Grace period between opening the model socket and sending session.update.",
    )
    assistant_speaks_first: bool = Field(default=False)
    initial_greeting_prompt: str = Field(
        default="Diga: Oi, tudo bem? Como posso ajudar você hoje?",
        description="User text item sent when the assistant is configured to speak first.",
    )

    # Script and tool catalog (deployment data, not code)
    instructions_file: Path | None = Field(
        default=None,
        description="Path to the system instructions. Defaults to the bundled script.",
    )
    tool_catalog_file: Path | None = Field(
        default=None,
        description="Path to the JSON tool catalog. Defaults to the bundled catalog.",
    )

    # Observability
    log_event_types: list[str] = Field(default_factory=lambda: list(DEFAULT_LOG_EVENT_TYPES))
    show_timing_math: bool = Field(default=False)

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/calls.db",
        description="SQLAlchemy connection string.",
    )
    auto_create_db_schema: bool = Field(
        default=True,
        description="If true, creates tables automatically on startup (useful for local/dev).",
    )

    # Call outcome capture
    outcome_export_dir: Path | None = Field(
        default=None,
        description="If set, every call summary is also written there as tabulacao_<ts>.json.",
    )
    outcome_webhook_url: str | None = Field(
        default=None,
        description="Optional endpoint notified with the call summary after each call.",
    )
    outcome_webhook_api_key: str | None = Field(default=None)
    customer_name: str | None = Field(default=None)
    customer_cpf_prefix: str | None = Field(default=None)

    # Usage reporting (USD per million tokens)
    input_token_price_per_million: float = Field(default=10.0, ge=0.0)
    output_token_price_per_million: float = Field(default=20.0, ge=0.0)
    currency_rate: float = Field(default=5.8, gt=0.0, description="USD to local currency.")
    currency_label: str = Field(default="R$")

    # Twilio (Voice)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for the media stream (e.g. https://<ngrok>.ngrok-free.app).",
    )
    twilio_say_voice: str = Field(default="Polly.Camila")
    twilio_say_language: str = Field(default="pt-BR")
    twilio_greeting: str = Field(
        default="Olá! Aguarde enquanto conectamos você com nosso assistente virtual."
    )
    twilio_connected_prompt: str = Field(default="Pode falar!")

    data_dir: Path = Field(default=Path("./data"))

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("openai_api_key")
    @classmethod
    def blank_key_is_missing(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
