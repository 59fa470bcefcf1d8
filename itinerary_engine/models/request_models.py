import math
from pydantic import BaseModel, Field, field_validator
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional
from enum import Enum

from itinerary_engine.components.factory import ComponentFactory
from itinerary_engine.utils.config import Settings, get_settings


class PacePreference(str, Enum):
    RELAXED = "relaxed"
    MODERATE = "moderate"
    PACKED = "packed"


class UserPreferences(BaseModel):
    # Dates may be missing or contradictory here; the engine's validator reports it
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    primary_destination: str = ""
    additional_destinations: List[str] = Field(default_factory=list)

    # Group
    adults: int = Field(1, ge=0)
    children: int = Field(0, ge=0)
    infants: int = Field(0, ge=0)

    # Budget (whole trip, in `currency`)
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    currency: str = Field("USD", pattern=r"^[A-Za-z]{3}$")

    # Style
    interests: List[str] = Field(default_factory=list)
    accommodation_type: Optional[str] = None  # "hotel", "any", "3-star", ...
    transportation_preference: Optional[str] = None
    pace_preference: PacePreference = PacePreference.MODERATE

    # Special requirements
    mobility_requirements: bool = False
    dietary_restrictions: List[str] = Field(default_factory=list)
    special_requests: Optional[str] = None
    must_visit_order: List[str] = Field(default_factory=list)  # destination ids

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()

    def traveler_count(self) -> int:
        return self.adults + self.children + self.infants

    def trip_duration_days(self) -> int:
        """Whole days between start and end, rounded up; 0 when dates are missing."""
        if not self.start_date or not self.end_date:
            return 0
        delta = self.end_date - self.start_date
        return math.ceil(delta.total_seconds() / 86400)


class EngineOptions(BaseModel):
    performance_target_ms: int = Field(3000, gt=0)
    enable_parallel_processing: bool = True
    cache_enabled: bool = True
    max_content_items: int = Field(10000, gt=0)
    fallback_strategies: bool = True
    debug_mode: bool = False
    fallback_content_limit: int = Field(1000, gt=0)
    parallel_day_planning_max_days: int = 14
    match_score_threshold: float = Field(0.5, ge=0, le=1)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EngineOptions":
        s = settings or get_settings()
        return cls(
            performance_target_ms=s.PERFORMANCE_TARGET_MS,
            enable_parallel_processing=s.ENABLE_PARALLEL_PROCESSING,
            cache_enabled=s.CACHE_ENABLED,
            max_content_items=s.MAX_CONTENT_ITEMS,
            fallback_strategies=s.FALLBACK_STRATEGIES,
            debug_mode=s.DEBUG_MODE,
            fallback_content_limit=s.FALLBACK_CONTENT_LIMIT,
            parallel_day_planning_max_days=s.PARALLEL_DAY_PLANNING_MAX_DAYS,
            match_score_threshold=s.MATCH_SCORE_THRESHOLD,
        )


class GenerationRequest(BaseModel):
    preferences: UserPreferences
    available_content: List[Any] = Field(default_factory=list)
    options: Optional[EngineOptions] = None

    @field_validator("available_content", mode="before")
    @classmethod
    def _build_components(cls, items):
        return [ComponentFactory.create_component(i) if isinstance(i, dict) else i for i in items or []]
