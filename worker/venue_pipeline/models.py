"""Core data models shared by the venue ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, field_validator


class PreVettingStatus(str, Enum):
    PENDING = "pending"
    YES = "yes"
    NO = "no"
    NEEDS_CONFIRMATION = "needs_confirmation"


class PricingTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    LUXURY = "luxury"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class BBox:
    """Geographic bounding box in degrees (WGS84)."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @property
    def width(self) -> float:
        return self.max_lon - self.min_lon

    @property
    def height(self) -> float:
        return self.max_lat - self.min_lat


# Tag values that mark an element as an events venue, estate or historic manor.
VENUE_TAG_MARKERS = {
    "venue": {"wedding"},
    "amenity": {"events_venue", "conference_centre"},
    "building": {"estate"},
    "historic": {"manor"},
    "tourism": {"attraction"},
}


class SourceTags(Mapping[str, str]):
    """Read-only view over the free-form tags reported by the geospatial source.

    The handful of keys the pipeline relies on get named accessors; anything
    else is reachable through normal mapping lookup.
    """

    def __init__(self, raw: Optional[Mapping[str, Any]] = None) -> None:
        self._raw: Dict[str, str] = {}
        for key, value in (raw or {}).items():
            if value is not None:
                self._raw[str(key)] = str(value)

    def __getitem__(self, key: str) -> str:
        return self._raw[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._raw)

    def __len__(self) -> int:
        return len(self._raw)

    def __repr__(self) -> str:
        return f"SourceTags({self._raw!r})"

    @property
    def name(self) -> Optional[str]:
        return self._raw.get("name")

    @property
    def website(self) -> Optional[str]:
        for key in ("website", "contact:website", "url"):
            value = (self._raw.get(key) or "").strip()
            if value:
                return value
        return None

    def indicates_venue(self) -> bool:
        """True when a tag value marks this place as an events venue, estate or manor."""
        return any(self._raw.get(key) in values for key, values in VENUE_TAG_MARKERS.items())

    def to_dict(self) -> Dict[str, str]:
        return dict(self._raw)


@dataclass(slots=True)
class ImageManifest:
    """Local image files kept for a venue, plus the logo verification state."""

    local_paths: List[str] = field(default_factory=list)
    processed_at: Optional[str] = None
    logo_verified: bool = False
    last_verified_at: Optional[str] = None

    @classmethod
    def from_json(cls, payload: Optional[Mapping[str, Any]]) -> Optional["ImageManifest"]:
        if payload is None:
            return None
        paths = payload.get("local_paths") or []
        return cls(
            local_paths=[str(path) for path in paths],
            processed_at=payload.get("processed_at"),
            logo_verified=bool(payload.get("clip_logo_verified", False)),
            last_verified_at=payload.get("last_verified_at"),
        )

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "local_paths": list(self.local_paths),
            "processed_at": self.processed_at,
        }
        if self.logo_verified:
            payload["clip_logo_verified"] = True
            payload["last_verified_at"] = self.last_verified_at
        return payload


@dataclass(slots=True)
class Venue:
    """Candidate venue record as read back from the store."""

    venue_id: str
    osm_id: str
    name: str
    website_url: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    tags: SourceTags = field(default_factory=SourceTags)
    pre_vetting_status: PreVettingStatus = PreVettingStatus.PENDING
    pre_vetting_keywords: Optional[List[str]] = None
    pre_vetted_at: Optional[datetime] = None
    raw_markdown: Optional[str] = None
    image_manifest: Optional[ImageManifest] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Venue":
        return cls(
            venue_id=str(row["venue_id"]),
            osm_id=row["osm_id"],
            name=row.get("name") or "Unknown Venue",
            website_url=row.get("website_url"),
            lat=row.get("lat"),
            lon=row.get("lon"),
            tags=SourceTags(row.get("osm_metadata")),
            pre_vetting_status=PreVettingStatus(row.get("pre_vetting_status") or "pending"),
            pre_vetting_keywords=row.get("pre_vetting_keywords"),
            pre_vetted_at=row.get("pre_vetted_at"),
            raw_markdown=row.get("raw_markdown"),
            image_manifest=ImageManifest.from_json(row.get("image_data")),
        )


class EnrichmentFields(BaseModel):
    """Structured fields extracted from a venue's crawled document."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    is_wedding_venue: StrictBool = False
    is_estate: StrictBool = False
    is_historic: StrictBool = False
    has_lodging: StrictBool = False
    lodging_capacity: StrictInt = Field(default=0, ge=0)
    pricing_tier: PricingTier = PricingTier.UNKNOWN

    @field_validator("is_wedding_venue", "is_estate", "is_historic", "has_lodging", mode="before")
    @classmethod
    def _null_flag(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("lodging_capacity", mode="before")
    @classmethod
    def _null_capacity(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("pricing_tier", mode="before")
    @classmethod
    def _normalise_tier(cls, value: Any) -> Any:
        if value is None:
            return PricingTier.UNKNOWN
        if isinstance(value, str):
            return value.strip().lower()
        return value


@dataclass(slots=True)
class CrawledPage:
    """One rendered page of a venue website."""

    url: str
    depth: int
    markdown: str
