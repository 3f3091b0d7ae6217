from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel

from config import Configuration
from models import Coordinate, Entity, RankedEntity
from services.attractions import fetch_attraction, fetch_attractions, filter_attractions
from services.directions import directions_links
from services.firestore import FirestoreClient, FirestoreError
from services.location import OriginResolution, resolve_origin
from services.ranking import InvalidCoordinateError, distance_between, rank_nearby
from utils import format_distance


load_dotenv()


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    close_clients()


app = FastAPI(title="Nearby Attractions", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CoordinatePayload(BaseModel):
    latitude: float
    longitude: float


class OriginPayload(BaseModel):
    coordinate: CoordinatePayload
    source: str
    message: Optional[str] = None


class AttractionPayload(BaseModel):
    id: str
    name: Optional[str] = None
    coordinate: Optional[CoordinatePayload] = None
    distance_km: Optional[float] = None
    distance_label: Optional[str] = None
    metadata: Dict[str, Any] = {}
    directions: Dict[str, str] = {}


class NearbyResponse(BaseModel):
    origin: OriginPayload
    max_distance_km: float
    radius_presets: List[float]
    count: int
    attractions: List[AttractionPayload]


class AttractionResponse(BaseModel):
    origin: OriginPayload
    attraction: AttractionPayload


def _coord_payload(c: Optional[Coordinate]) -> Optional[CoordinatePayload]:
    if c is None:
        return None
    return CoordinatePayload(latitude=c.latitude, longitude=c.longitude)


def _origin_payload(resolution: OriginResolution) -> OriginPayload:
    return OriginPayload(
        coordinate=_coord_payload(resolution.coordinate),
        source=resolution.source,
        message=resolution.message,
    )


def _to_payload(
    entity: Entity,
    distance_km: Optional[float],
    *,
    origin: Optional[Coordinate] = None,
    with_directions: bool = False,
) -> AttractionPayload:
    directions: dict[str, str] = {}
    if with_directions and entity.coordinate is not None:
        directions = directions_links(entity.coordinate, origin)
    return AttractionPayload(
        id=entity.id,
        name=entity.name,
        coordinate=_coord_payload(entity.coordinate),
        distance_km=(round(distance_km, 3) if distance_km is not None else None),
        distance_label=(format_distance(distance_km) if distance_km is not None else None),
        metadata=dict(entity.metadata),
        directions=directions,
    )


def _load_config() -> Configuration:
    try:
        cfg = Configuration.from_env()
        cfg.require_firestore()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return cfg


_clients: Dict[tuple, FirestoreClient] = {}
_clients_lock = threading.Lock()


def _get_client(cfg: Configuration) -> FirestoreClient:
    """One client per Firestore target so its listing cache survives across requests."""
    key = (
        cfg.documents_url(),
        cfg.firestore_api_key,
        cfg.firestore_timeout,
        cfg.firestore_page_size,
        cfg.cache_ttl_sec,
    )
    with _clients_lock:
        client = _clients.get(key)
        if client is None:
            client = FirestoreClient(cfg)
            _clients[key] = client
        return client


def close_clients() -> None:
    with _clients_lock:
        for client in _clients.values():
            client.close()
        _clients.clear()


def _resolve(cfg: Configuration, lat: Optional[float], lon: Optional[float]) -> OriginResolution:
    try:
        return resolve_origin(cfg, lat, lon)
    except InvalidCoordinateError as exc:
        logger.info("rejected origin lat={} lon={}: {}", lat, lon, exc)
        raise HTTPException(status_code=422, detail=exc.user_message)


@app.get("/healthz")
def healthz() -> dict:
    cfg = Configuration.from_env()
    logger.info("cfg: {}", cfg.log_summary())
    return {"status": "ok"}


@app.get("/attractions/nearby", response_model=NearbyResponse)
def nearby_attractions(
    lat: Optional[float] = Query(None, description="Device latitude"),
    lon: Optional[float] = Query(None, description="Device longitude"),
    max_distance_km: Optional[float] = Query(None, description="Radius in km (defaults to configured radius)"),
    q: Optional[str] = Query(None, description="Search text matched against name, city and address"),
    category: Optional[str] = Query(None, alias="type", description="Attraction category, e.g. beach or temple"),
) -> NearbyResponse:
    cfg = _load_config()
    resolution = _resolve(cfg, lat, lon)
    radius = cfg.default_max_distance_km if max_distance_km is None else max_distance_km

    try:
        entities = fetch_attractions(cfg, client=_get_client(cfg))
        matching = filter_attractions(entities, query=q, category=category)
        ranked: List[RankedEntity] = rank_nearby(resolution.coordinate, radius, matching)
    except InvalidCoordinateError as exc:
        raise HTTPException(status_code=422, detail=exc.user_message)
    except FirestoreError as exc:
        logger.error("attraction fetch failed: {}", exc)
        raise HTTPException(status_code=502, detail="attraction source unavailable")
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except Exception as exc:
        logger.exception("nearby ranking failed: {}", exc)
        raise HTTPException(status_code=500, detail="internal error")

    logger.info(
        "nearby origin=({:.5f}, {:.5f}) source={} radius_km={} q={!r} type={!r} fetched={} matched={} returned={}",
        resolution.coordinate.latitude,
        resolution.coordinate.longitude,
        resolution.source,
        radius,
        q,
        category,
        len(entities),
        len(matching),
        len(ranked),
    )

    return NearbyResponse(
        origin=_origin_payload(resolution),
        max_distance_km=radius,
        radius_presets=list(cfg.radius_presets_km),
        count=len(ranked),
        attractions=[_to_payload(r.entity, r.distance_km) for r in ranked],
    )


@app.get("/attractions/{attraction_id}", response_model=AttractionResponse)
def attraction_detail(
    attraction_id: str,
    lat: Optional[float] = Query(None, description="Device latitude"),
    lon: Optional[float] = Query(None, description="Device longitude"),
) -> AttractionResponse:
    cfg = _load_config()
    resolution = _resolve(cfg, lat, lon)

    try:
        entity = fetch_attraction(cfg, attraction_id, client=_get_client(cfg))
    except FirestoreError as exc:
        logger.error("attraction fetch failed id={}: {}", attraction_id, exc)
        raise HTTPException(status_code=502, detail="attraction source unavailable")
    except Exception as exc:
        logger.exception("attraction detail failed: {}", exc)
        raise HTTPException(status_code=500, detail="internal error")

    if entity is None:
        raise HTTPException(status_code=404, detail="attraction not found")

    distance = None
    if entity.coordinate is not None:
        distance = distance_between(resolution.coordinate, entity.coordinate)

    # Directions start from the device only; a fallback origin would mislead.
    directions_origin = resolution.coordinate if resolution.source == "device" else None
    return AttractionResponse(
        origin=_origin_payload(resolution),
        attraction=_to_payload(entity, distance, origin=directions_origin, with_directions=True),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8010, reload=True)
