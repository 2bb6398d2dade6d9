"""Persistence of station configurations.

StationConfig (pydantic) is what the core works with; StationModel (ORM)
is how it is stored. update_status() is the status callback the station
service calls before it releases a station lock.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ..models.station_config import StationModel
from ..schemas.station import StationConfig

logger = logging.getLogger(__name__)


class StationNotFound(KeyError):
    pass


class StationStore:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, station_id: str) -> StationConfig:
        with self._session_factory() as db:
            row = db.get(StationModel, station_id)
            if row is None:
                raise StationNotFound(station_id)
            return StationConfig.model_validate(row)

    def list_ids(self) -> list[str]:
        with self._session_factory() as db:
            return list(db.scalars(select(StationModel.id).order_by(StationModel.id)))

    def save(self, station: StationConfig) -> None:
        """Insert or replace a station."""
        values = station.model_dump()
        values["rain_collector_size"] = int(station.rain_collector_size)
        with self._session_factory() as db:
            row = db.get(StationModel, station.id)
            if row is None:
                db.add(StationModel(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            db.commit()
        logger.info("Station %s saved (%s:%d)", station.id, station.host, station.port)

    def update_status(
        self,
        station_id: str,
        last_archive_date: Optional[datetime] = None,
        delta_time_seconds: Optional[float] = None,
    ) -> None:
        """Persist the operational fields a completed exchange produced.

        Only the fields that are given are written.
        """
        with self._session_factory() as db:
            row = db.get(StationModel, station_id)
            if row is None:
                raise StationNotFound(station_id)
            if last_archive_date is not None:
                row.last_archive_date = last_archive_date
            if delta_time_seconds is not None:
                row.delta_time_seconds = delta_time_seconds
            db.commit()
        logger.debug(
            "Station %s status: last_archive_date=%s delta_time_seconds=%s",
            station_id, last_archive_date, delta_time_seconds,
        )

    def delete(self, station_id: str) -> None:
        with self._session_factory() as db:
            row = db.get(StationModel, station_id)
            if row is not None:
                db.delete(row)
                db.commit()
