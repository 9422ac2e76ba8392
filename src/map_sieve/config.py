"""Configuration settings for the MapSieve extraction pipeline.

This module defines the configuration settings for the pipeline, including the
Gemini API credentials and model names, the retry policy and logging. It uses
Pydantic's BaseSettings for environment variable management. Pipeline entry
points receive these objects explicitly; only the composition root calls
`get_settings`.
"""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseModel):
    """Gemini API connection details.

    Attributes:
        api_key: The Gemini API key.
        text_model: Model used for text, URL and HTML analysis.
        image_model: Preferred model for image analysis.
        image_fallback_model: Model tried when the preferred image model fails.
        output_language: Language requested for summaries and descriptions.
        html_char_limit: Maximum number of HTML characters sent in one prompt.
    """

    api_key: str = Field(..., description="Gemini API key")
    text_model: str = Field("gemini-2.5-flash", description="Model for text analysis")
    image_model: str = Field("gemini-3-pro-preview", description="Preferred image model")
    image_fallback_model: str = Field("gemini-2.5-flash", description="Fallback image model")
    output_language: str = Field(
        "Traditional Chinese (zh-TW)", description="Language of generated text fields"
    )
    html_char_limit: int = Field(30000, gt=0, description="HTML characters sent per prompt")


class RetrySettings(BaseModel):
    """Retry policy for the generation call.

    Attributes:
        max_attempts: Total number of calls, including the first one.
        initial_delay: Seconds to wait before the first retry; doubles afterwards.
    """

    # 4 attempts = the first call plus three retries.
    max_attempts: int = Field(4, ge=1, description="Total attempts per call")
    initial_delay: float = Field(1.0, ge=0.0, description="Initial backoff delay in seconds")


class LoggingSettings(BaseModel):
    """Logging configuration settings.

    Attributes:
        level: The logging level (e.g., INFO, DEBUG).
        format: The log message format string.
    """

    level: str = Field("INFO", description="Logging level")
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )


class Settings(BaseSettings):
    """Global application settings.

    Loaded from environment variables (nested with ``__``, e.g.
    ``GEMINI__API_KEY``) and an optional ``.env`` file.

    Attributes:
        gemini: Gemini API configuration.
        retry: Retry policy.
        logging: Logging configuration settings.
    """

    gemini: GeminiSettings
    retry: RetrySettings = Field(default_factory=RetrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the settings.

    Returns:
        The global Settings instance.
    """
    return Settings()
