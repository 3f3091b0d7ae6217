from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from config import Configuration
from models import Coordinate, Entity
from services.firestore import FirestoreClient
from services.ranking import is_valid_coordinate
from utils import coerce_float


# Display fields carried through from attraction documents as-is.
PASSTHROUGH_FIELDS = (
    "name",
    "description",
    "imageUrl",
    "rating",
    "reviewCount",
    "type",
    "estimatedDuration",
    "entranceFee",
    "bestTimeToVisit",
    "amenities",
    "guidelines",
    "history",
    "openingHours",
    "nearbyAttractions",
)

LOCATION_FIELDS = ("address", "city", "province")


def parse_coordinate(raw: Any) -> Optional[Coordinate]:
    """Build a Coordinate from a {latitude, longitude} mapping, or None if unusable."""
    if not isinstance(raw, dict):
        return None
    lat = coerce_float(raw.get("latitude", raw.get("lat")))
    lon = coerce_float(raw.get("longitude", raw.get("lng", raw.get("lon"))))
    if lat is None or lon is None:
        return None
    coordinate = Coordinate(latitude=lat, longitude=lon)
    if not is_valid_coordinate(coordinate):
        return None
    return coordinate


def _extract_coordinate(data: Dict[str, Any]) -> Optional[Coordinate]:
    location = data.get("location")
    if isinstance(location, dict) and "coordinates" in location:
        return parse_coordinate(location.get("coordinates"))
    return parse_coordinate(data.get("coordinates"))


def _images(data: Dict[str, Any]) -> List[str]:
    image_url = data.get("imageUrl")
    if isinstance(image_url, str) and image_url:
        return [image_url]
    images = data.get("images")
    if isinstance(images, list):
        return [str(x) for x in images if isinstance(x, str) and x]
    return []


def entity_from_document(doc_id: str, data: Dict[str, Any]) -> Entity:
    """Normalize an attraction document; a missing or bad location leaves coordinate=None."""
    metadata: dict[str, Any] = {}
    for key in PASSTHROUGH_FIELDS:
        if key in data and data[key] is not None:
            metadata[key] = data[key]
    if not isinstance(metadata.get("name"), str) or not metadata["name"].strip():
        metadata["name"] = str(doc_id)

    location = data.get("location")
    if isinstance(location, dict):
        loc_meta = {k: location[k] for k in LOCATION_FIELDS if location.get(k) is not None}
        if loc_meta:
            metadata["location"] = loc_meta

    metadata["images"] = _images(data)

    return Entity(id=str(doc_id), coordinate=_extract_coordinate(data), metadata=metadata)


def _search_texts(entity: Entity) -> List[str]:
    location = entity.metadata.get("location")
    if not isinstance(location, dict):
        location = {}
    values = [entity.metadata.get("name"), location.get("city"), location.get("address")]
    return [v.casefold() for v in values if isinstance(v, str)]


def filter_attractions(
    entities: Iterable[Entity],
    query: Optional[str] = None,
    category: Optional[str] = None,
) -> List[Entity]:
    """Keep entities whose name, city or address contains ``query`` and whose type equals ``category``.

    Both checks ignore case; a blank query or category matches everything.
    """
    needle = (query or "").strip().casefold()
    wanted = (category or "").strip().casefold()
    results: list[Entity] = []
    for entity in entities:
        if needle and not any(needle in text for text in _search_texts(entity)):
            continue
        if wanted:
            kind = entity.metadata.get("type")
            if not isinstance(kind, str) or kind.strip().casefold() != wanted:
                continue
        results.append(entity)
    return results


def fetch_attractions(cfg: Configuration, client: Optional[FirestoreClient] = None) -> List[Entity]:
    cfg.require_firestore()
    client = client or FirestoreClient(cfg)
    documents = client.list_documents(cfg.attractions_collection)
    entities = [entity_from_document(doc.id, doc.data) for doc in documents]
    missing = [e.id for e in entities if e.coordinate is None]
    if missing:
        logger.info(
            "attractions without usable coordinates: {} of {} ({})",
            len(missing),
            len(entities),
            ", ".join(missing[:10]),
        )
    return entities


def fetch_attraction(cfg: Configuration, doc_id: str, client: Optional[FirestoreClient] = None) -> Optional[Entity]:
    cfg.require_firestore()
    client = client or FirestoreClient(cfg)
    doc = client.get_document(cfg.attractions_collection, doc_id)
    if doc is None:
        return None
    return entity_from_document(doc.id or doc_id, doc.data)
