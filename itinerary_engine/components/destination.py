from datetime import date
from typing import ClassVar, List, Optional

from pydantic import Field, field_validator

from itinerary_engine.models.component_models import Coordinates, TouristSeason
from itinerary_engine.components.base import ComponentFields
from itinerary_engine.components.validation import DESTINATION_CHECKS


class Destination(ComponentFields):
    validation_pipeline: ClassVar = DESTINATION_CHECKS
    type_tag: ClassVar[str] = "destination"

    location: str
    coordinates: Coordinates
    country_code: str
    local_currency: str = "USD"
    timezone: Optional[str] = None
    languages: List[str] = Field(default_factory=list)
    safety_rating: Optional[int] = None
    tourist_season: Optional[TouristSeason] = None

    @field_validator("country_code", "local_currency")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    def estimated_duration(self) -> int:
        return 24 * 60

    def is_available(self, start: date, end: Optional[date] = None) -> bool:
        return True
