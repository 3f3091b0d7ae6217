"""Data models for the nearby attractions service."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class Entity:
    id: str
    coordinate: Optional[Coordinate] = None  # None when the source document had no usable location
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False)

    @property
    def name(self) -> Optional[str]:
        value = self.metadata.get("name")
        return value if isinstance(value, str) else None


@dataclass(frozen=True)
class RankedEntity:
    entity: Entity
    distance_km: float

    @property
    def id(self) -> str:
        return self.entity.id

    @property
    def coordinate(self) -> Optional[Coordinate]:
        return self.entity.coordinate

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.entity.metadata
