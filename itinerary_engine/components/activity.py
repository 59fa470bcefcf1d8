from datetime import date
from decimal import Decimal
from typing import ClassVar, List, Optional

from pydantic import Field

from itinerary_engine.models.component_models import (
    AccessibilityInfo, ActivityCategory, Coordinates, Difficulty, IndoorOutdoor, Money, TimeSlot
)
from itinerary_engine.components.base import ComponentFields
from itinerary_engine.components.validation import ACTIVITY_CHECKS
from itinerary_engine.utils.geo import season_for_month

HIGH_PRIORITY_CATEGORIES = (ActivityCategory.SIGHTSEEING, ActivityCategory.CULTURAL, ActivityCategory.CULINARY)
INFANT_UNFRIENDLY_CATEGORIES = (ActivityCategory.ADVENTURE, ActivityCategory.NIGHTLIFE, ActivityCategory.SPORTS)

# Youngest age assumed for a child traveller when checking min_age
YOUNGEST_CHILD_AGE = 3


class Activity(ComponentFields):
    validation_pipeline: ClassVar = ACTIVITY_CHECKS
    type_tag: ClassVar[str] = "activity"

    category: ActivityCategory
    location: str
    coordinates: Coordinates
    time_slot: TimeSlot
    difficulty: Difficulty = Difficulty.EASY
    min_age: Optional[int] = None
    max_group_size: Optional[int] = None
    indoor_outdoor: IndoorOutdoor = IndoorOutdoor.BOTH
    accessibility: AccessibilityInfo = Field(default_factory=AccessibilityInfo)
    seasonality: List[str] = Field(default_factory=lambda: ["year-round"])
    booking_required: bool = False
    cancellation_policy: Optional[str] = None

    def estimated_duration(self) -> int:
        return self.time_slot.duration

    def is_available(self, start: date, end: Optional[date] = None) -> bool:
        seasons = [s.lower() for s in self.seasonality]
        if not seasons or "year-round" in seasons:
            return True
        return season_for_month(start.month) in seasons

    def priority(self) -> int:
        priority = 1
        if self.category in HIGH_PRIORITY_CATEGORIES:
            priority += 2
        if self.booking_required:
            priority += 1
        if self.difficulty == Difficulty.CHALLENGING:
            priority += 1
        return priority

    def pricing_key(self) -> str:
        return f"activity_{self.category.value}"

    def pricing_location(self) -> str:
        return self.location

    def is_suitable_for_group(self, adults: int, children: int = 0, infants: int = 0) -> bool:
        total = adults + children + infants
        if self.max_group_size and total > self.max_group_size:
            return False
        if self.min_age and children > 0 and YOUNGEST_CHILD_AGE < self.min_age:
            return False
        if infants > 0 and self.category in INFANT_UNFRIENDLY_CATEGORIES:
            return False
        return True

    def meets_accessibility_requirements(self, requirements: AccessibilityInfo) -> bool:
        for flag in ("wheelchair_accessible", "hearing_impaired", "visually_impaired", "mobility_assistance"):
            if getattr(requirements, flag) and not getattr(self.accessibility, flag):
                return False
        return True

    def cost_per_person(self, group_size: int = 1) -> Optional[Money]:
        if not self.estimated_cost:
            return None
        return Money(
            amount=self.estimated_cost.amount / Decimal(max(group_size, 1)),
            currency=self.estimated_cost.currency,
        )

    def duration_category(self) -> str:
        duration = self.estimated_duration()
        if duration <= 60:
            return "short"
        if duration <= 240:
            return "medium"
        return "long"
