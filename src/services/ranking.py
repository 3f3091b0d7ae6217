from __future__ import annotations

import math
from typing import Any, Iterable, List, Optional

from models import Coordinate, Entity, RankedEntity
from utils import haversine_km


# Distances below this are treated as the same point.
DISTANCE_EPSILON_KM = 1e-9

INVALID_LOCATION_MESSAGE = "We could not determine a valid location."


class InvalidCoordinateError(ValueError):
    user_message = INVALID_LOCATION_MESSAGE


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def is_valid_coordinate(coordinate: Optional[Coordinate]) -> bool:
    if coordinate is None:
        return False
    lat = getattr(coordinate, "latitude", None)
    lon = getattr(coordinate, "longitude", None)
    if not (_is_number(lat) and _is_number(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def require_valid_coordinate(coordinate: Optional[Coordinate]) -> Coordinate:
    if not is_valid_coordinate(coordinate):
        raise InvalidCoordinateError(f"invalid coordinate: {coordinate!r}")
    return coordinate  # type: ignore[return-value]


def distance_between(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in km between two valid coordinates.

    Results below DISTANCE_EPSILON_KM are snapped to 0.
    """
    require_valid_coordinate(a)
    require_valid_coordinate(b)
    dist = haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
    return 0.0 if dist < DISTANCE_EPSILON_KM else dist


def _sort_key(ranked: RankedEntity) -> float:
    # Bucket by epsilon so near-identical distances tie and keep input order.
    return math.floor(ranked.distance_km / DISTANCE_EPSILON_KM)


def rank_nearby(
    origin: Coordinate,
    max_distance_km: float,
    entities: Iterable[Entity],
) -> List[RankedEntity]:
    """Annotate entities with distance from origin, drop those beyond the radius, nearest first.

    Entities with a missing or out-of-range coordinate are skipped. An invalid
    origin raises InvalidCoordinateError; a negative or non-finite radius raises
    ValueError. The radius boundary is inclusive and equal distances keep their
    input order.
    """
    require_valid_coordinate(origin)
    if not _is_number(max_distance_km) or max_distance_km < 0:
        raise ValueError(f"max_distance_km must be a non-negative finite number, got {max_distance_km!r}")

    ranked: list[RankedEntity] = []
    for entity in entities:
        coordinate = entity.coordinate
        if not is_valid_coordinate(coordinate):
            continue
        dist = haversine_km(origin.latitude, origin.longitude, coordinate.latitude, coordinate.longitude)
        if dist < DISTANCE_EPSILON_KM:
            dist = 0.0
        if dist > max_distance_km:
            continue
        ranked.append(RankedEntity(entity=entity, distance_km=dist))

    ranked.sort(key=_sort_key)
    return ranked
