from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the project root directory (where .env is located)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
ENV_FILE = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        populate_by_name=True,
        alias_generator=lambda field_name: field_name.upper(),
        extra="ignore",
    )

    # Text and speech models (OpenAI compatible endpoint)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    text_model: str = "gpt-4o-mini"
    fallback_text_model: Optional[str] = "gpt-4o"
    tts_model: str = "gpt-4o-mini-tts"

    # Image, stock photo, sound effect and music services
    volcengine_api_key: Optional[str] = None
    pexels_api_key: Optional[str] = None
    freesound_api_key: Optional[str] = None
    jamendo_client_id: Optional[str] = None

    # Outbound request pacing
    max_concurrent_requests: int = 1
    min_request_interval: float = 1.5

    # Retry of transient upstream failures
    retry_attempts: int = 3
    retry_initial_delay: float = 5.0
    retry_max_delay: float = 60.0
    retry_backoff_base: float = 2.0
    retry_jitter: float = 0.4


settings = Settings()
