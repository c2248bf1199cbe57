# flexhttp/config.py
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlexSettings(BaseSettings):
    """
    Manages user-configurable settings for flexhttp clients, primarily loaded
    from environment variables (prefixed ``FLEXHTTP_``) or a .env file.

    Hooks and encoders are not settings: they are fixed per client instance
    at construction time.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "secrets.env"),
        env_file_encoding="utf-8",
        env_prefix="FLEXHTTP_",
        extra="ignore",
        case_sensitive=False,
    )

    # --- Default session settings ---
    request_timeout: float = Field(
        default=30.0, gt=0, description="Default request timeout in seconds"
    )
    user_agent: str = Field(
        default="flexhttp/0.1.0",
        description="User-Agent header sent by the default session",
    )
    follow_redirects: bool = Field(
        default=True, description="Whether the default session follows redirects"
    )
    verify_ssl: bool = Field(
        default=True,
        description="Verify TLS certificates (using certifi) in the default session",
    )

    # --- Diagnostics ---
    response_preview_chars: int = Field(
        default=4096,
        ge=0,
        description="Maximum number of body characters shown when a Response is printed",
    )

    # --- Engine ---
    engine_thread_name: str = Field(
        default="flexhttp-engine",
        description="Name of the thread running the client's event loop",
    )


@lru_cache
def get_settings() -> FlexSettings:
    """
    Provides access to the flexhttp settings.

    Settings are loaded from environment variables or .env/secrets.env files.
    The instance is cached; call ``get_settings.cache_clear()`` after changing
    the environment.

    Returns:
        FlexSettings: The settings instance.
    """
    return FlexSettings()
