from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Env
    env: str = "development"
    log_level: str = "INFO"

    # Practice-local zone; appointment dates and times are wall-clock values in it
    timezone: str = "Europe/Berlin"

    # Scheduling rules
    default_duration_minutes: int = 30
    business_start_hour: int = 8
    business_end_hour: int = 18  # inclusive, the 18:00 slot is still offered
    slot_interval_minutes: int = 30

    # OpenAI (AI booking extraction). Leave the key empty to disable the LLM call.
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    @property
    def llm_enabled(self) -> bool:
        return bool(self.openai_api_key)


settings = Settings()
