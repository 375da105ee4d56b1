"""Application settings loaded from the environment (or a ``.env`` file).

Settings are read once per process via :func:`get_settings`.  Secrets are
optional at load time so that commands which do not need them (``preview``,
``status``) still work; call :meth:`Settings.require` before the first
network call that depends on a value to fail fast with
:class:`~yoto_f1.errors.ConfigurationError`.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import ConfigurationError

# Public client id of the yoto-up project; used when no app-specific client is set.
DEFAULT_CLIENT_ID = "RslORm04nKbhf04qb91r2Pxwjsn3Hnd5"

DEFAULT_VOICE_ID = "JBFqnCBsd6RMkjVDRZzb"
DEFAULT_MODEL_ID = "eleven_multilingual_v2"


class Settings(BaseSettings):
    """Runtime configuration for yoto-f1."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Yoto OAuth
    yoto_client_id: str = DEFAULT_CLIENT_ID
    yoto_client_secret: SecretStr | None = None
    yoto_redirect_uri: str = "http://localhost:8000/api/auth/callback"

    # Speech synthesis
    tts_backend: Literal["elevenlabs", "labs"] = Field(
        default="elevenlabs", validation_alias="YOTO_F1_TTS_BACKEND"
    )
    elevenlabs_api_key: SecretStr | None = None
    elevenlabs_voice_id: str = DEFAULT_VOICE_ID
    elevenlabs_model_id: str = DEFAULT_MODEL_ID
    isolate_track_failures: bool = Field(
        default=False, validation_alias="YOTO_F1_ISOLATE_TRACK_FAILURES"
    )
    max_concurrent_uploads: int = Field(default=4, validation_alias="YOTO_F1_MAX_CONCURRENT_UPLOADS")

    # Race data
    cloudflare_worker_url: str | None = None
    openf1_cache_seconds: int = Field(default=86400, validation_alias="YOTO_F1_OPENF1_CACHE_SECONDS")

    # Webhook
    webhook_secret: SecretStr | None = None

    # Artwork
    icon_path: Path | None = Field(default=None, validation_alias="YOTO_F1_ICON_PATH")
    cover_path: Path | None = Field(default=None, validation_alias="YOTO_F1_COVER_PATH")

    # Persistence
    store_path: Path | None = Field(default=None, validation_alias="YOTO_F1_STORE_PATH")

    # Polling
    poll_interval_seconds: float = Field(default=2.0, validation_alias="YOTO_F1_POLL_INTERVAL")
    transcode_timeout_seconds: float = Field(default=240.0, validation_alias="YOTO_F1_TRANSCODE_TIMEOUT")
    labs_job_timeout_seconds: float = Field(default=600.0, validation_alias="YOTO_F1_LABS_TIMEOUT")

    debug: bool = Field(default=False, validation_alias="YOTO_F1_DEBUG")

    def require(self, *names: str) -> None:
        """Raise :class:`ConfigurationError` if any named setting is unset."""
        missing = [name for name in names if not getattr(self, name, None)]
        if missing:
            env_names = ", ".join(name.upper() for name in missing)
            raise ConfigurationError(f"Missing required configuration: {env_names}")

    def secret(self, name: str) -> str | None:
        value = getattr(self, name)
        return value.get_secret_value() if value is not None else None


@lru_cache
def get_settings() -> Settings:
    return Settings()
