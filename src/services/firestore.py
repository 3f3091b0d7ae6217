from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests
from loguru import logger

from config import Configuration


RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class FirestoreError(RuntimeError):
    pass


@dataclass
class _RetryPolicy:
    retries: int = 3
    base_delay: float = 0.5


@dataclass
class FirestoreDocument:
    id: str
    data: Dict[str, Any] = field(default_factory=dict)
    update_time: Optional[str] = None


def decode_value(value: Dict[str, Any]) -> Any:
    """Convert a Firestore REST typed value into a plain Python value."""
    if not isinstance(value, dict):
        return None
    if "nullValue" in value:
        return None
    if "stringValue" in value:
        return value["stringValue"]
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        # int64 is sent as a string
        try:
            return int(value["integerValue"])
        except (TypeError, ValueError):
            return None
    if "doubleValue" in value:
        try:
            return float(value["doubleValue"])
        except (TypeError, ValueError):
            return None
    if "timestampValue" in value:
        return value["timestampValue"]
    if "referenceValue" in value:
        return value["referenceValue"]
    if "bytesValue" in value:
        try:
            return base64.b64decode(value["bytesValue"])
        except (TypeError, ValueError):
            return None
    if "geoPointValue" in value:
        point = value["geoPointValue"] or {}
        # Firestore omits zero-valued fields
        return {
            "latitude": float(point.get("latitude", 0.0)),
            "longitude": float(point.get("longitude", 0.0)),
        }
    if "mapValue" in value:
        return decode_fields((value["mapValue"] or {}).get("fields") or {})
    if "arrayValue" in value:
        items = (value["arrayValue"] or {}).get("values") or []
        return [decode_value(item) for item in items]
    return None


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(val) for key, val in fields.items()}


def parse_document(raw: Dict[str, Any]) -> FirestoreDocument:
    name = str(raw.get("name") or "")
    doc_id = name.rsplit("/", 1)[-1] if name else ""
    return FirestoreDocument(
        id=doc_id,
        data=decode_fields(raw.get("fields") or {}),
        update_time=raw.get("updateTime"),
    )


class FirestoreClient:
    """Read-only client for the Firestore REST API.

    Collection listings are kept for ``cache_ttl_sec`` per collection, so one
    client should live for the whole process.
    """

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.documents_url()
        self.session = session or requests.Session()
        self._listings: Dict[str, Tuple[float, List[FirestoreDocument]]] = {}

    def _cached_listing(self, collection: str) -> Optional[List[FirestoreDocument]]:
        entry = self._listings.get(collection)
        if entry is None:
            return None
        fetched_at, documents = entry
        if time.monotonic() - fetched_at > self.cfg.cache_ttl_sec:
            del self._listings[collection]
            return None
        return documents

    def clear_cache(self) -> None:
        self._listings.clear()

    def close(self) -> None:
        self.session.close()

    def _decode(self, resp: requests.Response, allow_missing: bool) -> Optional[dict]:
        if allow_missing and resp.status_code == 404:
            return None
        if not resp.ok:
            raise FirestoreError(f"upstream {resp.status_code}: {resp.text[:300]}")
        try:
            return resp.json()
        except ValueError:
            raise FirestoreError("invalid json response")

    def _get(self, path: str, params: dict, *, allow_missing: bool = False) -> Optional[dict]:
        url = f"{self.base}/{path.lstrip('/')}"
        params = dict(params)
        if self.cfg.firestore_api_key:
            params["key"] = self.cfg.firestore_api_key
        policy = _RetryPolicy()
        failure = ""
        for attempt in range(1, policy.retries + 2):
            try:
                resp = self.session.get(
                    url,
                    headers={"Accept": "application/json"},
                    params=params,
                    timeout=self.cfg.firestore_timeout,
                )
            except requests.RequestException as exc:
                failure = f"request error: {exc}"
            else:
                if resp.status_code not in RETRYABLE_STATUS:
                    return self._decode(resp, allow_missing)
                failure = f"upstream {resp.status_code}: {resp.text[:300]}"
            if attempt <= policy.retries:
                logger.warning("firestore {} {} (attempt {})", path, failure, attempt)
                time.sleep(policy.base_delay * attempt)
        raise FirestoreError(failure)

    def list_documents(self, collection: str) -> List[FirestoreDocument]:
        """Fetch every document in a collection, following page tokens."""
        cached = self._cached_listing(collection)
        if cached is not None:
            return list(cached)

        documents: list[FirestoreDocument] = []
        page_token: Optional[str] = None
        pages = 0
        while True:
            params: dict[str, Any] = {"pageSize": self.cfg.firestore_page_size}
            if page_token:
                params["pageToken"] = page_token
            payload = self._get(collection, params) or {}
            pages += 1
            documents.extend(parse_document(raw) for raw in payload.get("documents") or [])
            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        logger.debug("firestore collection={} documents={} pages={}", collection, len(documents), pages)
        if self.cfg.cache_ttl_sec > 0:
            self._listings[collection] = (time.monotonic(), list(documents))
        return documents

    def get_document(self, collection: str, doc_id: str) -> Optional[FirestoreDocument]:
        payload = self._get(f"{collection}/{doc_id}", {}, allow_missing=True)
        if payload is None:
            return None
        return parse_document(payload)
