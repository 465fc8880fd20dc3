"""Domain types for cached photo entries and the locations that own them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

COORDINATE_PRECISION = 6


class EntryState(str, Enum):
    """Lifecycle of a cache entry; only PENDING -> RESOLVED is allowed."""
    PENDING = "pending"
    RESOLVED = "resolved"


@dataclass(frozen=True, order=True)
class LocationKey:
    """A map pin: the coordinates photos were searched for."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        """Validate bounds and normalize coordinates to a fixed precision."""
        lat = float(self.latitude)
        lon = float(self.longitude)
        if not -90.0 <= lat <= 90.0:
            raise ValueError(f"latitude out of range: {lat}")
        if not -180.0 <= lon <= 180.0:
            raise ValueError(f"longitude out of range: {lon}")
        object.__setattr__(self, "latitude", round(lat, COORDINATE_PRECISION))
        object.__setattr__(self, "longitude", round(lon, COORDINATE_PRECISION))

    @property
    def token(self) -> str:
        """Canonical string form used as the storage key."""
        return f"{self.latitude:.{COORDINATE_PRECISION}f},{self.longitude:.{COORDINATE_PRECISION}f}"

    @classmethod
    def parse(cls, token: str) -> "LocationKey":
        """Build a key from its ``"lat,lon"`` form."""
        try:
            lat_raw, lon_raw = token.split(",")
            return cls(float(lat_raw), float(lon_raw))
        except (AttributeError, TypeError, ValueError) as exc:
            raise ValueError(f"invalid location token: {token!r}") from exc

    def __str__(self) -> str:
        return self.token


def new_entry_id() -> str:
    """Generate a new entry id."""
    return str(uuid.uuid4())


@dataclass
class CacheEntry:
    """One remote photo, pending until its bytes are downloaded."""
    location_key: LocationKey
    locator: str
    position: int
    payload: Optional[bytes] = None
    id: str = field(default_factory=new_entry_id)

    def __post_init__(self) -> None:
        if not self.locator:
            raise ValueError("cache entry locator must be non-empty")

    @property
    def state(self) -> EntryState:
        return EntryState.PENDING if self.payload is None else EntryState.RESOLVED

    @property
    def is_resolved(self) -> bool:
        return self.payload is not None
