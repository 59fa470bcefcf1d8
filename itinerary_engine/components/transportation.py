from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar, List, Optional

from pydantic import Field

from itinerary_engine.models.component_models import (
    Coordinates, Money, TransportationType, VehicleInfo
)
from itinerary_engine.components.base import ComponentFields
from itinerary_engine.components.validation import TRANSPORTATION_CHECKS
from itinerary_engine.utils.geo import haversine_km

FAST_MODES = (TransportationType.FLIGHT, TransportationType.TRAIN)
ECO_MODES = (TransportationType.WALKING, TransportationType.CYCLING, TransportationType.TRAIN)
BOOKABLE_MODES = (TransportationType.FLIGHT, TransportationType.TRAIN, TransportationType.BUS)


class Transportation(ComponentFields):
    validation_pipeline: ClassVar = TRANSPORTATION_CHECKS
    type_tag: ClassVar[str] = "transportation"

    type: TransportationType
    from_location: str = Field(..., alias="from")
    to_location: str = Field(..., alias="to")
    from_coordinates: Coordinates
    to_coordinates: Coordinates
    departure_time: datetime
    arrival_time: datetime
    duration: int  # minutes
    carrier: Optional[str] = None
    vehicle_info: Optional[VehicleInfo] = None
    booking_reference: Optional[str] = None

    def estimated_duration(self) -> int:
        return self.duration

    def is_available(self, start: date, end: Optional[date] = None) -> bool:
        departure = self.departure_time.date()
        if start and departure < start:
            return False
        if end and departure > end:
            return False
        return True

    def priority(self) -> int:
        priority = 1
        if self.type in FAST_MODES:
            priority += 2
        if self.booking_reference:
            priority += 1
        if self.duration < 60:
            priority += 1
        return priority

    def pricing_key(self) -> str:
        return f"transportation_{self.type.value}"

    def pricing_location(self) -> str:
        return self.from_location

    def distance_km(self) -> float:
        return haversine_km(
            self.from_coordinates.latitude, self.from_coordinates.longitude,
            self.to_coordinates.latitude, self.to_coordinates.longitude,
        )

    def mode_category(self) -> str:
        distance = self.distance_km()
        if distance <= 10:
            return "local"
        if distance <= 100:
            return "regional"
        return "long-distance"

    def is_eco_friendly(self) -> bool:
        return self.type in ECO_MODES

    def requires_booking(self) -> bool:
        return self.type in BOOKABLE_MODES

    def average_speed_kmh(self) -> float:
        hours = self.duration / 60
        return self.distance_km() / hours if hours else 0.0

    def cost_per_person(self, group_size: int = 1) -> Optional[Money]:
        if not self.estimated_cost:
            return None
        return Money(
            amount=self.estimated_cost.amount / Decimal(max(group_size, 1)),
            currency=self.estimated_cost.currency,
        )

    def has_amenities(self, required: List[str]) -> bool:
        if not self.vehicle_info or not self.vehicle_info.amenities:
            return False
        lowered = [a.lower() for a in self.vehicle_info.amenities]
        return all(any(r.lower() in a for a in lowered) for r in required)

    def formatted_duration(self) -> str:
        hours, minutes = divmod(self.duration, 60)
        if hours == 0:
            return f"{minutes}m"
        if minutes == 0:
            return f"{hours}h"
        return f"{hours}h {minutes}m"
