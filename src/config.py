from __future__ import annotations

import os
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from utils import mask_secret


class Configuration(BaseModel):
    # Firestore
    firestore_project_id: Optional[str] = Field(default=None)
    firestore_api_key: Optional[str] = Field(default=None)
    firestore_base_url: str = Field(default="https://firestore.googleapis.com")
    firestore_timeout: int = Field(default=15)
    firestore_page_size: int = Field(default=300)
    attractions_collection: str = Field(default="attractions")
    cache_ttl_sec: int = Field(default=300)

    # Fallback origin when the device location is unavailable (Colombo)
    default_latitude: float = Field(default=6.927079, ge=-90.0, le=90.0)
    default_longitude: float = Field(default=79.861244, ge=-180.0, le=180.0)

    # Radius
    default_max_distance_km: float = Field(default=50.0, ge=0.0)
    radius_presets_km: List[float] = Field(default_factory=lambda: [10.0, 25.0, 50.0, 100.0])

    @field_validator("radius_presets_km", mode="before")
    @classmethod
    def _split_presets(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "firestore_project_id": os.getenv("FIRESTORE_PROJECT_ID"),
            "firestore_api_key": os.getenv("FIRESTORE_API_KEY"),
            "firestore_base_url": os.getenv("FIRESTORE_BASE_URL"),
            "firestore_timeout": os.getenv("FIRESTORE_TIMEOUT"),
            "firestore_page_size": os.getenv("FIRESTORE_PAGE_SIZE"),
            "attractions_collection": os.getenv("ATTRACTIONS_COLLECTION"),
            "cache_ttl_sec": os.getenv("CACHE_TTL_SEC"),
            "default_latitude": os.getenv("DEFAULT_LATITUDE"),
            "default_longitude": os.getenv("DEFAULT_LONGITUDE"),
            "default_max_distance_km": os.getenv("DEFAULT_MAX_DISTANCE_KM"),
            "radius_presets_km": os.getenv("RADIUS_PRESETS_KM"),
        }

        for k, v in env_map.items():
            if v is None:
                continue
            raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def require_firestore(self) -> None:
        if not self.firestore_project_id:
            raise ValueError("FIRESTORE_PROJECT_ID is required")

    def log_summary(self) -> str:
        return (
            "firestore=%s base=%s timeout=%s collection=%s default_origin=(%.6f, %.6f) radius_km=%s api_key=%s"
            % (
                self.firestore_project_id or "unset",
                self.firestore_base_url,
                self.firestore_timeout,
                self.attractions_collection,
                self.default_latitude,
                self.default_longitude,
                self.default_max_distance_km,
                mask_secret(self.firestore_api_key),
            )
        )

    def documents_url(self) -> str:
        base = self.firestore_base_url.rstrip("/")
        return f"{base}/v1/projects/{self.firestore_project_id}/databases/(default)/documents"
