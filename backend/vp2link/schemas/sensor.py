"""Pydantic schemas for converted sensor readings."""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel

Scalar = Union[int, float, str]


class ValueWithUnit(BaseModel):
    value: Optional[Scalar] = None
    unit: str


class ConvertedReading(BaseModel):
    """One field expressed in native, metric and user-preferred units."""
    native: ValueWithUnit
    metric: ValueWithUnit
    user: ValueWithUnit


class CurrentConditionsResponse(BaseModel):
    station_id: str
    timestamp: datetime
    readings: dict[str, ConvertedReading]


class StationTimeResponse(BaseModel):
    station_id: str
    console_time: datetime
    delta_time_seconds: float
    adjusted: bool = False


class ArchiveEntry(BaseModel):
    timestamp: datetime
    readings: dict[str, ConvertedReading]


class ArchiveResponse(BaseModel):
    station_id: str
    since: Optional[datetime] = None
    last_archive_date: Optional[datetime] = None
    records: list[ArchiveEntry]
