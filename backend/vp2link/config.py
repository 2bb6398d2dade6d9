"""Application configuration using Pydantic Settings."""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings

# Resolve config: prefer system config (installed), fall back to repo .env (dev)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_SYSTEM_CONF = Path("/etc/vp2link/vp2link.conf")
_ENV_FILE = _SYSTEM_CONF if _SYSTEM_CONF.exists() else _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    # Network timeouts (seconds)
    connect_timeout: float = 2.0
    idle_timeout: float = 1.5
    command_timeout: float = 2.0
    command_spacing: float = 0.2

    # Station lock
    lock_dir: str = "locks"
    lock_stale_sec: float = 4.0
    lock_retries: int = 3
    lock_retry_interval: float = 1.0

    # Host liveness probe: "icmp" or "tcp"
    probe_method: str = "icmp"
    probe_timeout: float = 1.0

    # Archive download
    archive_max_pages: int = 50

    # Database
    db_path: str = "vp2link.db"

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Make db_path and lock_dir absolute: under /var/lib/vp2link if installed, else project root."""
        base = Path("/var/lib/vp2link") if _ENV_FILE == _SYSTEM_CONF else _PROJECT_ROOT
        if not Path(self.db_path).is_absolute():
            self.db_path = str(base / self.db_path)
        if not Path(self.lock_dir).is_absolute():
            self.lock_dir = str(base / self.lock_dir)
        return self

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.db_path}"

    # User units
    units_temperature: str = "°C"
    units_speed: str = "km/h"
    units_direction: str = "°"
    units_pressure: str = "hpa"
    units_rain: str = "mm"
    units_rain_rate: str = "mm/h"
    units_et: str = "mm"
    units_uv: str = "index"
    units_irradiance: str = "w/m²"
    units_humidity: str = "%"
    units_voltage: str = "V"
    units_forecast: str = "ForecastClass"
    units_date: str = "yyyy-mm-dd"
    units_time: str = "hh:mm"

    def user_units(self) -> dict[str, str]:
        """Quantity -> preferred unit table consumed by the conversion pipeline."""
        return {
            "temperature": self.units_temperature,
            "speed": self.units_speed,
            "direction": self.units_direction,
            "pressure": self.units_pressure,
            "rain": self.units_rain,
            "rainRate": self.units_rain_rate,
            "et": self.units_et,
            "uv": self.units_uv,
            "irradiance": self.units_irradiance,
            "humidity": self.units_humidity,
            "voltage": self.units_voltage,
            "forecast": self.units_forecast,
            "date": self.units_date,
            "time": self.units_time,
        }

    # Logging
    log_level: str = "INFO"

    model_config = {"env_prefix": "VP2LINK_", "env_file": str(_ENV_FILE)}


settings = Settings()
