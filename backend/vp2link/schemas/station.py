"""Pydantic schema for a configured station."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..protocol.constants import ARCHIVE_INTERVALS, DEFAULT_PORT, RainCollectorSize


class StationConfig(BaseModel):
    """A VP2 console reachable through a TCP-to-serial bridge.

    The core only reads this, except that a completed exchange may update
    last_archive_date / delta_time_seconds, which the store then persists.
    Latitude, longitude, elevation, time zone, archive interval and rain
    season start are the values sync_settings pushes to the console.
    """

    id: str
    host: str
    port: int = DEFAULT_PORT
    name: Optional[str] = None

    rain_collector_size: RainCollectorSize = RainCollectorSize.IN_001
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    elevation_m: Optional[float] = None
    timezone: Optional[str] = None  # IANA name
    archive_interval: Optional[int] = None  # minutes
    rain_season_start: Optional[int] = Field(default=None, ge=1, le=12)

    last_archive_date: Optional[datetime] = None
    delta_time_seconds: Optional[float] = None

    model_config = {"from_attributes": True}

    @field_validator("archive_interval")
    @classmethod
    def _valid_interval(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in ARCHIVE_INTERVALS:
            raise ValueError(f"archive_interval must be one of {ARCHIVE_INTERVALS}")
        return v
