#!/usr/bin/env python3
"""Command-line front end for Vantage Pro2 consoles on TCP bridges.

Usage:
    vp2link add-station ID HOST [--port N] [...]   Register or update a station
    vp2link remove-station ID                      Forget a station
    vp2link stations                               List configured stations
    vp2link current ID                             Current conditions (LOOP + LOOP2)
    vp2link time ID                                Console clock and drift
    vp2link sync-time ID                           Set clock and time zone if drifted
    vp2link settings ID                            Read console EEPROM settings
    vp2link sync-settings ID                       Push configured settings to the console
    vp2link archive ID [--since ISO]               Download archive records

Results are printed as JSON on stdout; logs go to stderr.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Any

from vp2link.config import Settings, settings as default_settings
from vp2link.models.database import init_database, make_engine, make_session_factory
from vp2link.protocol.constants import DEFAULT_PORT, RainCollectorSize
from vp2link.protocol.errors import VP2Error
from vp2link.schemas.station import StationConfig
from vp2link.services.station_service import StationService
from vp2link.services.station_store import StationNotFound, StationStore

logger = logging.getLogger("vp2link.cli")


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def build_store(settings: Settings) -> StationStore:
    engine = make_engine(settings.database_url)
    init_database(engine)
    return StationStore(make_session_factory(engine))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_add_station(args: argparse.Namespace, store: StationStore) -> int:
    try:
        station = store.get(args.id).model_copy(update={"host": args.host, "port": args.port})
    except StationNotFound:
        station = StationConfig(id=args.id, host=args.host, port=args.port)
    updates = {
        key: getattr(args, key)
        for key in (
            "name", "latitude", "longitude", "elevation_m", "timezone",
            "archive_interval", "rain_season_start",
        )
        if getattr(args, key) is not None
    }
    if args.rain_collector_size is not None:
        updates["rain_collector_size"] = RainCollectorSize(args.rain_collector_size)
    station = StationConfig.model_validate({**station.model_dump(), **updates})
    store.save(station)
    _print(station.model_dump(mode="json"))
    return 0


def cmd_remove_station(args: argparse.Namespace, store: StationStore) -> int:
    store.delete(args.id)
    return 0


def cmd_stations(_args: argparse.Namespace, store: StationStore) -> int:
    _print([store.get(station_id).model_dump(mode="json") for station_id in store.list_ids()])
    return 0


async def _run_station_command(args: argparse.Namespace, service: StationService) -> Any:
    if args.command == "current":
        return (await service.current_conditions(args.id)).model_dump(mode="json")
    if args.command == "time":
        return (await service.station_time(args.id)).model_dump(mode="json")
    if args.command == "sync-time":
        return (await service.sync_time(args.id)).model_dump(mode="json")
    if args.command == "settings":
        return (await service.read_settings(args.id)).as_dict()
    if args.command == "sync-settings":
        changes = await service.sync_settings(args.id)
        return [
            {"parameter": c.parameter, "current": c.current, "desired": c.desired}
            for c in changes
        ]
    if args.command == "archive":
        since = datetime.fromisoformat(args.since) if args.since else None
        return (await service.download_archive(args.id, since)).model_dump(mode="json")
    raise ValueError(f"Unknown command {args.command}")


async def run_station_command(
    args: argparse.Namespace, store: StationStore, settings: Settings,
) -> Any:
    service = StationService.from_settings(store, settings)
    try:
        return await _run_station_command(args, service)
    finally:
        await service.close()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vp2link",
        description="Vantage Pro2 console link over TCP",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log protocol traffic")
    sub = parser.add_subparsers(dest="command")

    add = sub.add_parser("add-station", help="Register or update a station")
    add.add_argument("id")
    add.add_argument("host")
    add.add_argument("--port", type=int, default=DEFAULT_PORT)
    add.add_argument("--name")
    add.add_argument("--rain-collector-size", type=int, choices=[0, 1, 2],
                     help="0 = 0.01 in, 1 = 0.2 mm, 2 = 0.1 mm")
    add.add_argument("--latitude", type=float)
    add.add_argument("--longitude", type=float)
    add.add_argument("--elevation-m", type=float)
    add.add_argument("--timezone", help="IANA time zone, e.g. Europe/Paris")
    add.add_argument("--archive-interval", type=int, help="Minutes: 1, 5, 10, 15, 30, 60 or 120")
    add.add_argument("--rain-season-start", type=int, help="Month 1-12")

    remove = sub.add_parser("remove-station", help="Forget a station")
    remove.add_argument("id")

    sub.add_parser("stations", help="List configured stations")

    for name, help_text in (
        ("current", "Current conditions"),
        ("time", "Console clock and drift"),
        ("sync-time", "Set clock and time zone if drifted"),
        ("settings", "Read console EEPROM settings"),
        ("sync-settings", "Push configured settings to the console"),
    ):
        sub.add_parser(name, help=help_text).add_argument("id")

    archive = sub.add_parser("archive", help="Download archive records")
    archive.add_argument("id")
    archive.add_argument("--since", help="Console-local ISO timestamp")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = default_settings

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else level,
        format="%(levelname)s:     %(name)s - %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    store = build_store(settings)
    local_commands = {
        "add-station": cmd_add_station,
        "remove-station": cmd_remove_station,
        "stations": cmd_stations,
    }
    try:
        if args.command in local_commands:
            return local_commands[args.command](args, store)
        _print(asyncio.run(run_station_command(args, store, settings)))
        return 0
    except StationNotFound as e:
        logger.error("Unknown station %s", e.args[0])
        return 2
    except VP2Error as e:
        logger.error("%s: %s", type(e).__name__, e)
        if e.buffer_hex:
            logger.debug("Buffer: %s", e.buffer_hex)
        return 1
    except ValueError as e:
        logger.error("%s", e)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
