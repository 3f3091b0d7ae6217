from __future__ import annotations

from typing import Iterator
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

import main
from models import Coordinate, Entity
from services.firestore import FirestoreError


ENTITIES = [
    Entity(
        id="kandy",
        coordinate=Coordinate(7.29, 80.63),
        metadata={"name": "Temple of the Tooth", "type": "Temple", "location": {"city": "Kandy"}},
    ),
    Entity(
        id="nearby",
        coordinate=Coordinate(6.9, 79.9),
        metadata={"name": "Viharamahadevi Park", "type": "Park", "location": {"city": "Colombo"}},
    ),
    Entity(
        id="here",
        coordinate=Coordinate(6.927079, 79.861244),
        metadata={"name": "Galle Face Green", "type": "Beach", "location": {"city": "Colombo", "address": "Galle Rd"}},
    ),
    Entity(id="partial", coordinate=None, metadata={"name": "Unknown"}),
]


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setenv("FIRESTORE_PROJECT_ID", "demo")
    monkeypatch.delenv("DEFAULT_MAX_DISTANCE_KM", raising=False)
    monkeypatch.delenv("DEFAULT_LATITUDE", raising=False)
    monkeypatch.delenv("DEFAULT_LONGITUDE", raising=False)
    monkeypatch.delenv("CACHE_TTL_SEC", raising=False)
    main.close_clients()
    yield TestClient(main.app)
    main.close_clients()


def test_healthz(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_nearby_uses_default_origin_and_radius(client: TestClient) -> None:
    with patch("main.fetch_attractions", return_value=list(ENTITIES)):
        resp = client.get("/attractions/nearby")
    assert resp.status_code == 200
    body = resp.json()
    assert body["origin"]["source"] == "default"
    assert body["origin"]["message"] == "Unable to get your location. Using default location instead."
    assert body["max_distance_km"] == 50.0
    assert body["radius_presets"] == [10.0, 25.0, 50.0, 100.0]
    assert [a["id"] for a in body["attractions"]] == ["here", "nearby"]
    assert body["count"] == 2
    assert body["attractions"][0]["distance_km"] == 0.0
    assert body["attractions"][0]["distance_label"] == "0.0 km away"
    assert body["attractions"][1]["name"] == "Viharamahadevi Park"


def test_nearby_with_device_location_and_radius(client: TestClient) -> None:
    with patch("main.fetch_attractions", return_value=list(ENTITIES)):
        resp = client.get("/attractions/nearby", params={"lat": 7.29, "lon": 80.63, "max_distance_km": 10})
    body = resp.json()
    assert resp.status_code == 200
    assert body["origin"]["source"] == "device"
    assert [a["id"] for a in body["attractions"]] == ["kandy"]


def test_nearby_rejects_invalid_origin(client: TestClient) -> None:
    with patch("main.fetch_attractions", return_value=list(ENTITIES)) as fetch:
        resp = client.get("/attractions/nearby", params={"lat": 91, "lon": 0})
    assert resp.status_code == 422
    assert resp.json()["detail"] == "We could not determine a valid location."
    fetch.assert_not_called()


def test_nearby_rejects_negative_radius(client: TestClient) -> None:
    with patch("main.fetch_attractions", return_value=list(ENTITIES)):
        resp = client.get("/attractions/nearby", params={"max_distance_km": -5})
    assert resp.status_code == 422


def test_nearby_upstream_failure_is_502(client: TestClient) -> None:
    with patch("main.fetch_attractions", side_effect=FirestoreError("upstream 503")):
        resp = client.get("/attractions/nearby")
    assert resp.status_code == 502
    assert resp.json()["detail"] == "attraction source unavailable"


def test_nearby_requires_project(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FIRESTORE_PROJECT_ID")
    resp = client.get("/attractions/nearby")
    assert resp.status_code == 400


def test_detail_includes_distance_and_directions(client: TestClient) -> None:
    with patch("main.fetch_attraction", return_value=ENTITIES[0]):
        resp = client.get("/attractions/kandy", params={"lat": 6.927079, "lon": 79.861244})
    assert resp.status_code == 200
    attraction = resp.json()["attraction"]
    assert 85 < attraction["distance_km"] < 100
    assert attraction["directions"]["web"].endswith("destination=7.29,80.63&origin=6.927079,79.861244")
    assert attraction["directions"]["android"] == "google.navigation:q=7.29,80.63"


def test_detail_without_device_location_omits_directions_origin(client: TestClient) -> None:
    with patch("main.fetch_attraction", return_value=ENTITIES[0]):
        resp = client.get("/attractions/kandy")
    attraction = resp.json()["attraction"]
    assert "origin=" not in attraction["directions"]["web"]


def test_detail_for_partial_document_has_no_distance(client: TestClient) -> None:
    with patch("main.fetch_attraction", return_value=ENTITIES[3]):
        resp = client.get("/attractions/partial")
    attraction = resp.json()["attraction"]
    assert attraction["distance_km"] is None
    assert attraction["coordinate"] is None
    assert attraction["directions"] == {}


def test_detail_not_found(client: TestClient) -> None:
    with patch("main.fetch_attraction", return_value=None):
        resp = client.get("/attractions/missing")
    assert resp.status_code == 404


def test_nearby_listing_is_fetched_once_across_requests(client: TestClient) -> None:
    upstream = MagicMock()
    listing = MagicMock(status_code=200, ok=True, text="")
    listing.json.return_value = {
        "documents": [
            {
                "name": "projects/demo/databases/(default)/documents/attractions/galle-face",
                "fields": {
                    "name": {"stringValue": "Galle Face Green"},
                    "location": {
                        "mapValue": {
                            "fields": {
                                "coordinates": {"geoPointValue": {"latitude": 6.927079, "longitude": 79.861244}}
                            }
                        }
                    },
                },
            }
        ]
    }
    upstream.get.return_value = listing

    with patch("services.firestore.requests.Session", return_value=upstream) as session_cls:
        first = client.get("/attractions/nearby")
        second = client.get("/attractions/nearby", params={"max_distance_km": 10})

    assert [a["id"] for a in first.json()["attractions"]] == ["galle-face"]
    assert [a["id"] for a in second.json()["attractions"]] == ["galle-face"]
    assert session_cls.call_count == 1
    assert upstream.get.call_count == 1

    main.close_clients()
    upstream.close.assert_called_once()


def test_nearby_search_matches_city_and_address(client: TestClient) -> None:
    with patch("main.fetch_attractions", return_value=list(ENTITIES)):
        by_city = client.get("/attractions/nearby", params={"q": "colombo", "max_distance_km": 500})
        by_address = client.get("/attractions/nearby", params={"q": "GALLE RD", "max_distance_km": 500})
    assert [a["id"] for a in by_city.json()["attractions"]] == ["here", "nearby"]
    assert [a["id"] for a in by_address.json()["attractions"]] == ["here"]


def test_nearby_category_filter_ignores_case(client: TestClient) -> None:
    with patch("main.fetch_attractions", return_value=list(ENTITIES)):
        resp = client.get("/attractions/nearby", params={"type": "temple", "max_distance_km": 500})
    body = resp.json()
    assert resp.status_code == 200
    assert [a["id"] for a in body["attractions"]] == ["kandy"]
