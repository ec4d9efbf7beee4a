import threading
from dataclasses import dataclass
from datetime import datetime

from models.mixins import utcnow


@dataclass(frozen=True)
class Location:
    delivery_partner_id: int
    lat: float
    lng: float
    captured_at: datetime

    def to_payload(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}


class LocationStore:
    """
    Latest known position per delivery partner.

    Last write observed wins; nothing is kept beyond the current value and
    nothing survives a restart.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._locations: dict[int, Location] = {}

    def update(self, partner_id: int, lat: float, lng: float) -> Location:
        location = Location(delivery_partner_id=partner_id, lat=lat, lng=lng, captured_at=utcnow())
        with self._lock:
            self._locations[partner_id] = location
        return location

    def get(self, partner_id: int) -> Location | None:
        with self._lock:
            return self._locations.get(partner_id)

    def forget(self, partner_id: int) -> None:
        with self._lock:
            self._locations.pop(partner_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._locations)

    def clear(self) -> None:
        with self._lock:
            self._locations.clear()
