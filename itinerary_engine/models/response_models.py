from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from enum import Enum

from itinerary_engine.models.component_models import Coordinates, Money, TimeSlot
from itinerary_engine.models.planning_models import (
    BudgetOptimization, CostBreakdown, ScheduledActivity, ScheduledMeal, SequencedDestination
)
from itinerary_engine.models.request_models import PacePreference, UserPreferences
from itinerary_engine.components.accommodation import Accommodation
from itinerary_engine.components.transportation import Transportation


class PhysicalDemand(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class CulturalImmersion(str, Enum):
    LIGHT = "light"
    MODERATE = "moderate"
    DEEP = "deep"


class ItineraryDay(BaseModel):
    id: str
    day_number: int
    date: date
    title: str
    destination_id: str
    location: str
    coordinates: Coordinates
    accommodation: Optional[Accommodation] = None
    activities: List[ScheduledActivity] = Field(default_factory=list)
    transportation: List[Transportation] = Field(default_factory=list)
    meals: List[ScheduledMeal] = Field(default_factory=list)
    free_time: List[TimeSlot] = Field(default_factory=list)
    total_estimated_cost: Money
    pacing: PacePreference = PacePreference.MODERATE
    notes: Optional[str] = None


class ItinerarySummary(BaseModel):
    highlights: List[str] = Field(default_factory=list)
    total_activities: int = 0
    unique_destinations: int = 0
    avg_daily_cost: Money
    recommended_budget: Money
    physical_demand: PhysicalDemand = PhysicalDemand.LOW
    cultural_immersion: CulturalImmersion = CulturalImmersion.LIGHT


class ItineraryMetadata(BaseModel):
    generation_time_ms: float = 0.0
    engine_version: str
    confidence_score: float = Field(0.5, ge=0, le=1)
    optimization_flags: List[str] = Field(default_factory=list)


class GeneratedItinerary(BaseModel):
    id: str
    title: str
    description: str
    destinations: List[SequencedDestination] = Field(default_factory=list)
    days: List[ItineraryDay] = Field(default_factory=list)
    total_duration: int
    total_estimated_cost: Money
    cost_breakdown: Optional[CostBreakdown] = None
    summary: Optional[ItinerarySummary] = None
    metadata: Optional[ItineraryMetadata] = None
    preferences: UserPreferences
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    version: str = "1.0"


class BudgetOptimizationResult(BaseModel):
    optimized_itinerary: GeneratedItinerary
    cost_reduction: Money
    changes_applied: List[BudgetOptimization] = Field(default_factory=list)
    tradeoffs: List[str] = Field(default_factory=list)
    original_cost: Optional[Money] = None
    final_cost: Optional[Money] = None


class ValidationIssue(BaseModel):
    field: str
    code: str
    message: str
    severity: str = "error"
    suggestion: Optional[str] = None


class ValidationResult(BaseModel):
    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)


class GenerationError(BaseModel):
    code: str  # VALIDATION_FAILED | GENERATION_FAILED
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ComponentUsageStats(BaseModel):
    content_considered: int = 0
    activities_matched: int = 0
    accommodations_matched: int = 0
    transportation_matched: int = 0
    destinations_matched: int = 0
    activities_scheduled: int = 0
    destinations_sequenced: int = 0


class GenerationMetadata(BaseModel):
    request_id: str
    processing_time_ms: float
    stage_timings_ms: Dict[str, float] = Field(default_factory=dict)
    component_counts: ComponentUsageStats = Field(default_factory=ComponentUsageStats)
    optimization_applied: List[str] = Field(default_factory=list)
    cache_hit: bool = False
    engine_version: str = "1.0.0"


class GenerationResult(BaseModel):
    success: bool
    itinerary: Optional[GeneratedItinerary] = None
    error: Optional[GenerationError] = None
    metadata: Optional[GenerationMetadata] = None
    alternatives: List[GeneratedItinerary] = Field(default_factory=list)
    cache_key: Optional[str] = None
    fallback_used: bool = False
    original_error: Optional[str] = None


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    size: int = 0
    max_size: int = 0
    evictions: int = 0
    last_cleared: Optional[datetime] = None


class EngineStatus(BaseModel):
    version: str
    uptime_seconds: float
    total_generations: int = 0
    successful_generations: int = 0
    failed_generations: int = 0
    fallback_generations: int = 0
    success_rate: float = 0.0
    average_generation_time_ms: float = 0.0
    cache: Optional[CacheStats] = None
    services: Dict[str, bool] = Field(default_factory=dict)
    performance: Dict[str, Dict[str, float]] = Field(default_factory=dict)
