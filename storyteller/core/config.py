"""Configuration for the StoryTeller server.

Uses Pydantic settings so configuration can be provided via
environment variables or a local `.env` file. Values are read once at
process start; there is no hot reload.
"""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    # Application
    app_name: str = Field("StoryTeller", alias="APP_NAME")
    app_version: str = Field("0.1.0", alias="APP_VERSION")
    debug: bool = Field(False, alias="DEBUG")
    host: str = Field("0.0.0.0", alias="HOST")  # nosec B104
    port: int = Field(8080, alias="PORT")
    static_dir: str = Field("public", alias="STATIC_DIR")

    # Session backend (UpliftAI realtime assistants)
    upliftai_api_key: str = Field("", alias="UPLIFTAI_API_KEY")
    upliftai_api_url: str = Field("https://api.upliftai.org/v1", alias="UPLIFTAI_API_URL")
    assistant_id: str = Field("", alias="ASSISTANT_ID")
    upstream_timeout_sec: float = Field(30.0, alias="UPSTREAM_TIMEOUT_SEC")

    # Session shape sent to the backend (never user controlled)
    session_ttl_sec: int = Field(1800, alias="SESSION_TTL_SEC")
    stt_provider: str = Field("groq", alias="STT_PROVIDER")
    stt_model: str = Field("whisper-large-v3", alias="STT_MODEL")
    stt_language: str = Field("en", alias="STT_LANGUAGE")
    tts_provider: str = Field("upliftai", alias="TTS_PROVIDER")
    tts_voice_id: str = Field("v_meklc281", alias="TTS_VOICE_ID")
    tts_output_format: str = Field("MP3_22050_32", alias="TTS_OUTPUT_FORMAT")
    llm_provider: str = Field("groq", alias="LLM_PROVIDER")
    llm_model: str = Field("openai/gpt-oss-120b", alias="LLM_MODEL")

    # Protection for the cost-bearing session endpoints
    session_rate_limit: str = Field("30/minute", alias="SESSION_RATE_LIMIT")

    # Session lifecycle log verbosity (MINIMAL, STANDARD, VERBOSE, DEBUG)
    session_log_level: str = Field("STANDARD", alias="SESSION_LOG_LEVEL")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Using an LRU cache avoids re-parsing environment variables on every request.
    """
    return Settings()
