from datetime import date
from typing import ClassVar, List, Optional

from pydantic import Field

from itinerary_engine.models.component_models import (
    AccommodationType, ContactInfo, Coordinates, RoomType
)
from itinerary_engine.components.base import ComponentFields
from itinerary_engine.components.validation import ACCOMMODATION_CHECKS

PREMIUM_TYPES = (AccommodationType.HOTEL, AccommodationType.RESORT, AccommodationType.BOUTIQUE)

ACCESSIBILITY_AMENITIES = (
    "wheelchair accessible",
    "elevator",
    "accessible bathroom",
    "accessible parking",
    "accessible entrance",
)

MINUTES_PER_NIGHT = 24 * 60


class Accommodation(ComponentFields):
    validation_pipeline: ClassVar = ACCOMMODATION_CHECKS
    type_tag: ClassVar[str] = "accommodation"

    type: AccommodationType
    location: str
    coordinates: Coordinates
    star_rating: Optional[int] = None
    amenities: List[str] = Field(default_factory=list)
    room_types: List[RoomType]
    check_in_time: str = "15:00"
    check_out_time: str = "11:00"
    cancellation_policy: str = ""
    contact_info: ContactInfo

    def estimated_duration(self) -> int:
        return MINUTES_PER_NIGHT

    def is_available(self, start: date, end: Optional[date] = None) -> bool:
        return True

    def priority(self) -> int:
        priority = 1
        if self.star_rating:
            priority += self.star_rating
        if self.type in PREMIUM_TYPES:
            priority += 2
        return priority

    def pricing_key(self) -> str:
        return f"accommodation_{self.type.value}"

    def pricing_location(self) -> str:
        return self.location

    def suitable_room_types(self, guests: int) -> List[RoomType]:
        return [room for room in self.room_types if room.capacity >= guests]

    def cheapest_suitable_room(self, guests: int, currency: Optional[str] = None) -> Optional[RoomType]:
        rooms = self.suitable_room_types(guests)
        if currency:
            rooms = [r for r in rooms if r.price_per_night.currency == currency]
        if not rooms:
            return None
        return min(rooms, key=lambda r: r.price_per_night.amount)

    def category(self) -> str:
        if not self.star_rating:
            return "mid-range"
        if self.star_rating <= 2:
            return "budget"
        if self.star_rating >= 4:
            return "luxury"
        return "mid-range"

    def is_accessible(self) -> bool:
        lowered = [a.lower() for a in self.amenities]
        return any(needle in a for needle in ACCESSIBILITY_AMENITIES for a in lowered)

    def has_amenities(self, required: List[str]) -> bool:
        lowered = [a.lower() for a in self.amenities]
        return all(any(r.lower() in a for a in lowered) for r in required)
