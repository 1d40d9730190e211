import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Defaults taken from the dashboard's production configuration
DEFAULT_API_BASE_URL = "http://localhost:3000/api"
DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_SOUND_VOLUME = 0.8


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings for the alert service, read from the environment."""
    api_base_url: str = DEFAULT_API_BASE_URL
    auth_token: Optional[str] = None
    station_id: Optional[str] = None
    alert_kind: str = "fire"
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    sound_base_url: Optional[str] = None
    sound_volume: float = DEFAULT_SOUND_VOLUME
    refresh_on_push: bool = True
    push_stream_url: Optional[str] = None
    push_stream_api_key: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        # Load environment variables from .env file if present
        load_dotenv()
        return cls(
            api_base_url=os.getenv("API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/"),
            auth_token=os.getenv("AUTH_TOKEN"),
            station_id=os.getenv("STATION_ID"),
            alert_kind=os.getenv("ALERT_KIND", "fire"),
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS)),
            request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS)),
            sound_base_url=os.getenv("SOUND_BASE_URL"),
            sound_volume=float(os.getenv("SOUND_VOLUME", DEFAULT_SOUND_VOLUME)),
            refresh_on_push=_env_bool("REFRESH_ON_PUSH", True),
            push_stream_url=os.getenv("PUSH_STREAM_URL"),
            push_stream_api_key=os.getenv("PUSH_STREAM_API_KEY"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
