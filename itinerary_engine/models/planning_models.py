from pydantic import BaseModel, Field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional
from enum import Enum

from itinerary_engine.models.component_models import Coordinates, Money, TimeSlot
from itinerary_engine.models.request_models import PacePreference, UserPreferences
from itinerary_engine.components.activity import Activity
from itinerary_engine.components.destination import Destination
from itinerary_engine.components.transportation import Transportation


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


# --- preference matching ---

class ContentMatchScore(BaseModel):
    content_id: str
    score: float = Field(..., ge=0, le=1)
    reasons: List[str] = Field(default_factory=list)
    category: str
    created_at: Optional[datetime] = None


class DestinationConstraint(BaseModel):
    location: str
    must_visit: bool = True
    is_primary: bool = False


class BudgetConstraint(BaseModel):
    minimum: Optional[Decimal] = None
    maximum: Optional[Decimal] = None
    currency: str = "USD"


class MatchingCriteria(BaseModel):
    preferences: UserPreferences
    weights: Dict[str, float]
    destination_constraints: List[DestinationConstraint] = Field(default_factory=list)
    time_window: Optional[Dict[str, date]] = None
    budget_constraint: Optional[BudgetConstraint] = None
    derived_pace: str = "moderate"


# --- sequencing ---

class SequencingConstraints(BaseModel):
    max_travel_time_per_day: int = 480  # minutes
    preferred_transportation: List[str] = Field(default_factory=lambda: ["car"])
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    must_visit_order: List[str] = Field(default_factory=list)


class DestinationCluster(BaseModel):
    id: str
    destinations: List[Destination]
    centroid: Coordinates
    radius_km: float = 0.0


class TravelTimeResult(BaseModel):
    duration: int  # minutes
    distance: float  # km
    transportation_options: List[Transportation] = Field(default_factory=list)
    cost: Money


class SequencedDestination(Destination):
    sequence_order: int
    arrival_date: date
    departure_date: date
    days_allocated: int
    travel_time_from_previous: int = 0
    distance_from_previous_km: float = 0.0
    travel_cost_from_previous: Optional[Money] = None
    transportation_to_previous: Optional[Transportation] = None


class SequenceIssue(BaseModel):
    type: str  # travel_time | timing | logistics
    severity: Severity
    message: str
    affected_destinations: List[str] = Field(default_factory=list)


class SequenceValidation(BaseModel):
    valid: bool
    issues: List[SequenceIssue] = Field(default_factory=list)
    total_travel_time: int = 0
    total_distance: float = 0.0

    @property
    def errors(self) -> List[SequenceIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[SequenceIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]


# --- day planning ---

class MealType(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"


class MealStyle(str, Enum):
    QUICK = "quick"
    CASUAL = "casual"
    FINE_DINING = "fine_dining"


class MealPreference(BaseModel):
    type: MealType
    timing: Optional[time] = None
    style: MealStyle = MealStyle.CASUAL
    budget: Optional[Money] = None  # per person


class DayPlanningPreferences(BaseModel):
    pacing: PacePreference = PacePreference.MODERATE
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    meal_preferences: List[MealPreference] = Field(default_factory=list)
    activity_types: List[str] = Field(default_factory=list)
    max_activities: int = 6
    budget_for_day: Optional[Money] = None
    accessibility: bool = False


class ActivityPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ScheduledActivity(BaseModel):
    activity: Activity
    scheduled_time: TimeSlot
    buffer_time: int = 15
    priority: ActivityPriority = ActivityPriority.LOW

    @property
    def id(self) -> str:
        return self.activity.id

    @property
    def title(self) -> str:
        return self.activity.title

    @property
    def category(self) -> str:
        return self.activity.category.value


class ScheduledMeal(BaseModel):
    type: MealType
    time: time
    duration: int = 60
    style: MealStyle = MealStyle.CASUAL
    estimated_cost: Optional[Money] = None  # per person
    venue: Optional[str] = None
    dietary_options: List[str] = Field(default_factory=list)


class DayPlan(BaseModel):
    date: date
    destination: Destination
    activities: List[ScheduledActivity] = Field(default_factory=list)
    meals: List[ScheduledMeal] = Field(default_factory=list)
    free_time: List[TimeSlot] = Field(default_factory=list)
    total_cost: Money
    pacing: PacePreference = PacePreference.MODERATE
    satisfaction: float = 0.5
    budget_for_day: Optional[Money] = None
    accessibility_required: bool = False
    activity_types: List[str] = Field(default_factory=list)
    day_start: time = time(9, 0)
    day_end: time = time(18, 0)
    notes: Optional[str] = None


class DayPlanIssue(BaseModel):
    type: str  # timing | budget | logistics | preferences | accessibility
    severity: Severity
    message: str
    affected_items: List[str] = Field(default_factory=list)


class DayPlanValidation(BaseModel):
    valid: bool
    issues: List[DayPlanIssue] = Field(default_factory=list)
    overall_score: float
    suggestions: List[str] = Field(default_factory=list)


# --- pricing ---

class Seasonality(str, Enum):
    PEAK = "peak"
    SHOULDER = "shoulder"
    OFF = "off"


class PricingContext(BaseModel):
    start_date: date
    end_date: date
    travelers: int = 1
    seasonality: Seasonality = Seasonality.OFF
    advance_booking_days: int = 0
    currency: str = "USD"


class DataSource(str, Enum):
    REAL_TIME = "real_time"
    HISTORICAL = "historical"
    ESTIMATED = "estimated"
    FALLBACK = "fallback"


class CategoryCosts(BaseModel):
    accommodation: Money
    activities: Money
    transportation: Money
    meals: Money
    miscellaneous: Money

    @classmethod
    def zero(cls, currency: str) -> "CategoryCosts":
        z = Money.zero(currency)
        return cls(accommodation=z, activities=z, transportation=z, meals=z, miscellaneous=z)

    def total(self) -> Money:
        return self.accommodation + self.activities + self.transportation + self.meals + self.miscellaneous


class DailyCost(BaseModel):
    date: date
    total: Money
    breakdown: CategoryCosts


class CostBreakdown(BaseModel):
    total: Money
    by_category: CategoryCosts
    by_day: List[DailyCost] = Field(default_factory=list)
    contingency: Money
    confidence: float = Field(..., ge=0, le=1)
    sources: Dict[str, int] = Field(default_factory=dict)


class BudgetOptimization(BaseModel):
    strategy: str  # accommodation_downgrade | activity_substitution | transportation_change
    component_id: str
    replacement_id: Optional[str] = None
    description: str
    savings: Money


class ExternalDataQuery(BaseModel):
    type: str  # pricing | availability | weather
    location: Optional[str] = None
    dates: Optional[Dict[str, date]] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ExternalDataResponse(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    source: str
    rate_limit: Optional[Dict[str, Any]] = None
