"""Configuration management using Pydantic settings."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from relocate.controller import DEFAULT_REASSERT_INTERVAL
from relocate.geo import DEFAULT_ACCURACY_M
from relocate.routing.osrm import DEFAULT_OSRM_URL, DEFAULT_USER_AGENT
from relocate.simulation import DEFAULT_ARRIVAL_THRESHOLD_M, DEFAULT_TICK_INTERVAL


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "RELOCATE"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Spoofing core
    reassert_interval: float = DEFAULT_REASSERT_INTERVAL   # seconds between re-assertions
    default_accuracy: float = DEFAULT_ACCURACY_M           # meters
    default_mode: str = "detectable"                       # "detectable" or "undetectable"

    # Route simulation
    route_tick_interval: float = DEFAULT_TICK_INTERVAL     # seconds per tick
    arrival_threshold: float = DEFAULT_ARRIVAL_THRESHOLD_M # drive back ends within this
    route_interpolate: bool = False                        # slide between path vertices

    # Routing / geocoding (free, no API keys)
    osrm_url: str = DEFAULT_OSRM_URL
    nominatim_url: str = "https://nominatim.openstreetmap.org"
    http_timeout: float = 15.0
    user_agent: str = DEFAULT_USER_AGENT
    geo_cache_dir: str = "~/.cache/relocate"

    # Device access
    adb_path: str = "adb"
    adb_serial: str = ""            # empty = the only attached device
    use_adb: bool = True            # False = run shell commands locally (on-device)
    privileged_prefix: str = "su -c"
    target_package: str = "com.relocate.app"
    shell_timeout: float = 10.0

    # Position broadcast (cross-process readers)
    broadcast_path: Optional[Path] = None   # JSON record; None = in-memory only

    # Event feed (/api/events)
    event_log_size: int = 200

    # MQTT broadcast
    mqtt_enabled: bool = False
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_username: str = ""
    mqtt_password: str = ""
    mqtt_device_id: str = "device"


settings = Settings()
