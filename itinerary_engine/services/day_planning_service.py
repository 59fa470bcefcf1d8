import logging
from datetime import date, time
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from itinerary_engine.components.activity import Activity
from itinerary_engine.components.destination import Destination
from itinerary_engine.models.component_models import Money, TimeSlot
from itinerary_engine.models.planning_models import (
    ActivityPriority, DayPlan, DayPlanIssue, DayPlanValidation, DayPlanningPreferences,
    MealPreference, MealStyle, MealType, ScheduledActivity, ScheduledMeal, Severity
)
from itinerary_engine.models.request_models import PacePreference
from itinerary_engine.utils.errors import DayPlanningError

DEFAULT_DAY_START = time(9, 0)
DEFAULT_DAY_END = time(18, 0)

DEFAULT_MEAL_TIMES: Dict[MealType, time] = {
    MealType.BREAKFAST: time(8, 0),
    MealType.LUNCH: time(12, 30),
    MealType.DINNER: time(19, 0),
    MealType.SNACK: time(15, 30),
}

MEAL_DURATIONS: Dict[MealStyle, int] = {
    MealStyle.QUICK: 30,
    MealStyle.CASUAL: 60,
    MealStyle.FINE_DINING: 120,
}

MIN_SLOT_MINUTES = 60
MIN_FREE_MINUTES = 30
PACKED_DAY_ACTIVITIES = 6

PRIORITY_RANK = {ActivityPriority.HIGH: 3, ActivityPriority.MEDIUM: 2, ActivityPriority.LOW: 1}


class DayPlanningConfig(BaseModel):
    max_activities: int = 6
    activity_buffer: int = 15  # minutes
    meal_buffer: int = 30  # minutes


PACING_PRESETS: Dict[PacePreference, DayPlanningConfig] = {
    PacePreference.RELAXED: DayPlanningConfig(max_activities=3, activity_buffer=30, meal_buffer=45),
    PacePreference.MODERATE: DayPlanningConfig(max_activities=6, activity_buffer=15, meal_buffer=30),
    PacePreference.PACKED: DayPlanningConfig(max_activities=8, activity_buffer=10, meal_buffer=15),
}

# Ideal activities per ten-hour day, as a fraction of ten
PACING_OPTIMUM = {
    PacePreference.RELAXED: 0.3,
    PacePreference.MODERATE: 0.5,
    PacePreference.PACKED: 0.7,
}


def to_minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def from_minutes(minutes: int) -> time:
    minutes = max(0, min(minutes, 24 * 60 - 1))
    return time(minutes // 60, minutes % 60)


def make_slot(start: int, end: int) -> TimeSlot:
    return TimeSlot(start_time=from_minutes(start), end_time=from_minutes(end), duration=end - start)


def _overlaps(a: Tuple[int, int], b: Tuple[int, int]) -> bool:
    return a[0] < b[1] and b[0] < a[1]


def _activity_span(item: ScheduledActivity) -> Tuple[int, int]:
    return to_minutes(item.scheduled_time.start_time), to_minutes(item.scheduled_time.end_time)


def _meal_span(meal: ScheduledMeal) -> Tuple[int, int]:
    start = to_minutes(meal.time)
    return start, start + meal.duration


class DayPlanningService:
    """Builds single-day schedules: meals as fixed points, activities packed greedily around them."""

    def __init__(self, converter=None):
        self.converter = converter
        self.logger = logging.getLogger(__name__)

    def config_for(self, pacing: PacePreference) -> DayPlanningConfig:
        return PACING_PRESETS.get(pacing, PACING_PRESETS[PacePreference.MODERATE])

    async def plan_day(
        self,
        destination: Destination,
        day: date,
        candidate_activities: List[Activity],
        preferences: DayPlanningPreferences,
    ) -> DayPlan:
        config = self.config_for(preferences.pacing)
        day_start = preferences.start_time or DEFAULT_DAY_START
        day_end = preferences.end_time or DEFAULT_DAY_END
        if to_minutes(day_end) <= to_minutes(day_start):
            raise DayPlanningError(f"Day window {day_start}-{day_end} on {day} is empty")

        suitable = self.filter_activities(candidate_activities, destination, day, preferences)
        meals = self.schedule_meals(preferences.meal_preferences)
        slots = self.available_slots(to_minutes(day_start), to_minutes(day_end), meals, config.meal_buffer)
        max_activities = min(preferences.max_activities, config.max_activities)
        activities = self._schedule_activities(suitable, slots, preferences, config, max_activities)

        currency = self._plan_currency(preferences, activities, meals)
        plan = DayPlan(
            date=day,
            destination=destination,
            activities=activities,
            meals=meals,
            free_time=self.free_time(activities, meals, to_minutes(day_start), to_minutes(day_end)),
            total_cost=self._total_cost(activities, meals, currency),
            pacing=preferences.pacing,
            satisfaction=self.satisfaction_score(activities, preferences),
            budget_for_day=preferences.budget_for_day,
            accessibility_required=preferences.accessibility,
            activity_types=preferences.activity_types,
            day_start=day_start,
            day_end=day_end,
        )
        self.logger.debug(
            "[day_planning] Planned day",
            extra={
                "date": day.isoformat(),
                "destination": destination.id,
                "candidates": len(candidate_activities),
                "scheduled": len(activities),
            },
        )
        return plan

    async def optimize_day_schedule(self, plan: DayPlan) -> DayPlan:
        """Re-pack the same activities from the start of the day, highest priority first.

        If the activities no longer fit around the meals, the input plan is returned.
        """
        if not plan.activities:
            return plan
        config = self.config_for(plan.pacing)
        ordered = sorted(
            plan.activities,
            key=lambda a: (-PRIORITY_RANK[a.priority], to_minutes(a.scheduled_time.start_time)),
        )
        slots = self.available_slots(to_minutes(plan.day_start), to_minutes(plan.day_end), plan.meals, config.meal_buffer)

        repacked: List[ScheduledActivity] = []
        for item in ordered:
            placed = self._place(item.activity, slots, config.activity_buffer)
            if placed is None:
                self.logger.debug("[day_planning] Re-pack did not fit, keeping schedule", extra={"date": plan.date.isoformat()})
                return plan
            repacked.append(ScheduledActivity(
                activity=item.activity,
                scheduled_time=placed,
                buffer_time=config.activity_buffer,
                priority=item.priority,
            ))

        repacked.sort(key=lambda a: to_minutes(a.scheduled_time.start_time))
        preferences = DayPlanningPreferences(
            pacing=plan.pacing,
            activity_types=plan.activity_types,
        )
        return plan.model_copy(update={
            "activities": repacked,
            "free_time": self.free_time(repacked, plan.meals, to_minutes(plan.day_start), to_minutes(plan.day_end)),
            "satisfaction": self.satisfaction_score(repacked, preferences),
        })

    def validate_day_plan(self, plan: DayPlan) -> DayPlanValidation:
        issues: List[DayPlanIssue] = []
        suggestions: List[str] = []

        for i, first in enumerate(plan.activities):
            for second in plan.activities[i + 1:]:
                if _overlaps(_activity_span(first), _activity_span(second)):
                    issues.append(DayPlanIssue(
                        type="timing",
                        severity=Severity.ERROR,
                        message=f'Activities "{first.title}" and "{second.title}" overlap',
                        affected_items=[first.id, second.id],
                    ))

        for item in plan.activities:
            for meal in plan.meals:
                if _overlaps(_activity_span(item), _meal_span(meal)):
                    issues.append(DayPlanIssue(
                        type="timing",
                        severity=Severity.WARNING,
                        message=f'Activity "{item.title}" conflicts with {meal.type.value} time',
                        affected_items=[item.id, f"meal-{meal.type.value}"],
                    ))

        budget = plan.budget_for_day
        if budget is not None and budget.currency == plan.total_cost.currency and plan.total_cost.amount > budget.amount:
            issues.append(DayPlanIssue(
                type="budget",
                severity=Severity.WARNING,
                message=f"Day costs {plan.total_cost.amount} {budget.currency}, over the {budget.amount} budget",
                affected_items=["total-cost"],
            ))
            suggestions.append("Consider selecting some lower-cost activities")

        if len(plan.activities) > PACKED_DAY_ACTIVITIES:
            issues.append(DayPlanIssue(
                type="logistics",
                severity=Severity.WARNING,
                message="Very packed schedule, may be exhausting",
                affected_items=["schedule-density"],
            ))
            suggestions.append("Consider reducing the number of activities for a more relaxed pace")

        free_minutes = sum(slot.duration for slot in plan.free_time)
        if plan.pacing == PacePreference.RELAXED and free_minutes < MIN_SLOT_MINUTES:
            issues.append(DayPlanIssue(
                type="preferences",
                severity=Severity.WARNING,
                message="Limited free time for a relaxed pace preference",
                affected_items=["free-time"],
            ))
            suggestions.append("Add more buffer time between activities")

        if plan.accessibility_required:
            for item in plan.activities:
                if not item.activity.accessibility.wheelchair_accessible:
                    issues.append(DayPlanIssue(
                        type="accessibility",
                        severity=Severity.WARNING,
                        message=f'Activity "{item.title}" is not wheelchair accessible',
                        affected_items=[item.id],
                    ))

        return DayPlanValidation(
            valid=not any(i.severity == Severity.ERROR for i in issues),
            issues=issues,
            overall_score=max(0.0, 1 - 0.1 * len(issues)),
            suggestions=suggestions,
        )

    # --- building blocks ---

    def filter_activities(
        self,
        activities: List[Activity],
        destination: Destination,
        day: date,
        preferences: DayPlanningPreferences,
    ) -> List[Activity]:
        wanted_types = [t.lower() for t in preferences.activity_types]
        location = destination.location.lower()
        suitable = []
        for activity in activities:
            if location not in activity.location.lower():
                continue
            if wanted_types and activity.category.value not in wanted_types:
                continue
            if preferences.accessibility and not activity.accessibility.wheelchair_accessible:
                continue
            if not activity.is_available(day):
                continue
            suitable.append(activity)
        return suitable

    def schedule_meals(self, meal_preferences: List[MealPreference]) -> List[ScheduledMeal]:
        meals = [
            ScheduledMeal(
                type=pref.type,
                time=pref.timing or DEFAULT_MEAL_TIMES[pref.type],
                duration=MEAL_DURATIONS.get(pref.style, 60),
                style=pref.style,
                estimated_cost=pref.budget,
            )
            for pref in meal_preferences
        ]
        return sorted(meals, key=lambda m: m.time)

    def available_slots(self, day_start: int, day_end: int, meals: List[ScheduledMeal], meal_buffer: int) -> List[TimeSlot]:
        """Gaps of at least an hour inside the day window, keeping `meal_buffer` clear around each meal."""
        slots: List[TimeSlot] = []
        current = day_start
        for meal in sorted(meals, key=lambda m: m.time):
            meal_start, meal_end = _meal_span(meal)
            slot_end = min(meal_start - meal_buffer, day_end)
            if slot_end - current >= MIN_SLOT_MINUTES:
                slots.append(make_slot(current, slot_end))
            current = max(current, meal_end + meal_buffer)
            if current >= day_end:
                break
        if day_end - current >= MIN_SLOT_MINUTES:
            slots.append(make_slot(current, day_end))
        return slots

    def free_time(self, activities: List[ScheduledActivity], meals: List[ScheduledMeal], day_start: int, day_end: int) -> List[TimeSlot]:
        events = sorted([_activity_span(a) for a in activities] + [_meal_span(m) for m in meals])
        free: List[TimeSlot] = []
        current = day_start
        for start, end in events:
            if start >= day_end:
                break
            if start > current + MIN_FREE_MINUTES:
                free.append(make_slot(current, start))
            current = max(current, min(end, day_end))
        if day_end > current + MIN_FREE_MINUTES:
            free.append(make_slot(current, day_end))
        return free

    def satisfaction_score(self, activities: List[ScheduledActivity], preferences: DayPlanningPreferences) -> float:
        score = 0.5
        wanted_types = [t.lower() for t in preferences.activity_types]
        if wanted_types:
            matching = sum(1 for a in activities if a.category in wanted_types)
            score += matching / len(wanted_types) * 0.3

        density = len(activities) / 10
        optimum = PACING_OPTIMUM.get(preferences.pacing, 0.5)
        score += max(0.0, 1 - abs(density - optimum) * 2) * 0.3

        variety = min(len({a.category for a in activities}) / 4, 1)
        score += variety * 0.2
        return max(0.0, min(1.0, score))

    def score_activity(self, activity: Activity, preferences: DayPlanningPreferences) -> float:
        score = 0.5
        if activity.category.value in [t.lower() for t in preferences.activity_types]:
            score += 0.3

        duration = activity.estimated_duration()
        if preferences.pacing == PacePreference.RELAXED:
            score += 0.2 if duration > 120 else -0.1
        elif preferences.pacing == PacePreference.PACKED:
            score += 0.2 if duration < 120 else -0.1
        else:
            score += 0.2 if 60 <= duration <= 180 else -0.1

        if preferences.accessibility and activity.accessibility.wheelchair_accessible:
            score += 0.2
        return max(0.0, min(1.0, score))

    def _schedule_activities(
        self,
        activities: List[Activity],
        slots: List[TimeSlot],
        preferences: DayPlanningPreferences,
        config: DayPlanningConfig,
        max_activities: int,
    ) -> List[ScheduledActivity]:
        ranked = sorted(activities, key=lambda a: self.score_activity(a, preferences), reverse=True)
        remaining = list(slots)
        scheduled: List[ScheduledActivity] = []
        for activity in ranked:
            if len(scheduled) >= max_activities:
                break
            placed = self._place(activity, remaining, config.activity_buffer)
            if placed is None:
                continue
            scheduled.append(ScheduledActivity(
                activity=activity,
                scheduled_time=placed,
                buffer_time=config.activity_buffer,
                priority=self._priority(activity, preferences),
            ))
        return sorted(scheduled, key=lambda a: to_minutes(a.scheduled_time.start_time))

    @staticmethod
    def _place(activity: Activity, slots: List[TimeSlot], buffer: int) -> Optional[TimeSlot]:
        """Put `activity` at the start of the first slot it fits; `slots` is updated in place."""
        duration = activity.estimated_duration()
        for i, slot in enumerate(slots):
            if slot.duration < duration + buffer:
                continue
            start = to_minutes(slot.start_time)
            end = start + duration
            next_start = end + buffer
            remaining = to_minutes(slot.end_time) - next_start
            if remaining >= MIN_SLOT_MINUTES:
                slots[i] = make_slot(next_start, to_minutes(slot.end_time))
            else:
                del slots[i]
            return make_slot(start, end)
        return None

    @staticmethod
    def _priority(activity: Activity, preferences: DayPlanningPreferences) -> ActivityPriority:
        if activity.category.value in [t.lower() for t in preferences.activity_types]:
            return ActivityPriority.HIGH
        if activity.booking_required:
            return ActivityPriority.MEDIUM
        return ActivityPriority.LOW

    @staticmethod
    def _plan_currency(preferences: DayPlanningPreferences, activities: List[ScheduledActivity], meals: List[ScheduledMeal]) -> str:
        if preferences.budget_for_day:
            return preferences.budget_for_day.currency
        for meal in meals:
            if meal.estimated_cost:
                return meal.estimated_cost.currency
        for item in activities:
            if item.activity.estimated_cost:
                return item.activity.estimated_cost.currency
        return "USD"

    def _total_cost(self, activities: List[ScheduledActivity], meals: List[ScheduledMeal], currency: str) -> Money:
        costs = [a.activity.estimated_cost for a in activities if a.activity.estimated_cost]
        costs += [m.estimated_cost for m in meals if m.estimated_cost]
        total = Money.zero(currency)
        for cost in costs:
            if cost.currency != currency and self.converter is not None:
                cost = self.converter.convert_money(cost, currency)
            total = total + cost
        return total
