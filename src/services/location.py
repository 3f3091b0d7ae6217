from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from config import Configuration
from models import Coordinate
from services.ranking import InvalidCoordinateError, require_valid_coordinate


DEFAULT_LOCATION_MESSAGE = "Unable to get your location. Using default location instead."


@dataclass
class OriginResolution:
    coordinate: Coordinate
    source: str  # "device" or "default"
    message: Optional[str] = None


def default_origin(cfg: Configuration) -> Coordinate:
    return require_valid_coordinate(Coordinate(latitude=cfg.default_latitude, longitude=cfg.default_longitude))


def resolve_origin(
    cfg: Configuration,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> OriginResolution:
    """Pick the origin to measure distances from.

    No location at all (permission denied, no fix) falls back to the configured
    default. A partial or out-of-range location raises InvalidCoordinateError.
    """
    if latitude is None and longitude is None:
        return OriginResolution(coordinate=default_origin(cfg), source="default", message=DEFAULT_LOCATION_MESSAGE)
    if latitude is None or longitude is None:
        raise InvalidCoordinateError("both latitude and longitude are required")
    origin = require_valid_coordinate(Coordinate(latitude=latitude, longitude=longitude))
    return OriginResolution(coordinate=origin, source="device")
