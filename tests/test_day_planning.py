import asyncio
import pytest
from datetime import date, time
from decimal import Decimal

from itinerary_engine.models.component_models import Money, TimeSlot
from itinerary_engine.models.planning_models import (
    ActivityPriority, DayPlan, DayPlanningPreferences, MealPreference, MealType,
    ScheduledActivity, Severity
)
from itinerary_engine.models.request_models import PacePreference
from itinerary_engine.services.currency_converter import CurrencyConverter
from itinerary_engine.services.day_planning_service import DayPlanningService, to_minutes
from itinerary_engine.utils.errors import DayPlanningError

DAY = date(2025, 6, 2)


@pytest.fixture
def service():
    return DayPlanningService(converter=CurrencyConverter())


@pytest.fixture
def three_meals():
    return [
        MealPreference(type=MealType.BREAKFAST),
        MealPreference(type=MealType.LUNCH),
        MealPreference(type=MealType.DINNER),
    ]


def _plan(service, destination, activities, **prefs):
    preferences = DayPlanningPreferences(**prefs)
    return asyncio.run(service.plan_day(destination, DAY, activities, preferences))


def test_activities_fit_around_meals(service, make_destination, make_activity, three_meals):
    """Two-hour activities are packed into the gaps between meals"""
    activities = [make_activity(id=f"a{i}") for i in range(3)]
    plan = _plan(service, make_destination(), activities, meal_preferences=three_meals)

    # 09:30-12:00 and 14:00-18:00 are free once meal buffers are kept
    assert [a.scheduled_time.start_time for a in plan.activities] == [time(9, 30), time(14, 0)]
    starts = [to_minutes(a.scheduled_time.start_time) for a in plan.activities]
    assert starts == sorted(starts)
    assert [m.type for m in plan.meals] == [MealType.BREAKFAST, MealType.LUNCH, MealType.DINNER]

    validation = service.validate_day_plan(plan)
    assert validation.valid
    assert not [i for i in validation.issues if i.type == "timing"]
    assert 0 <= plan.satisfaction <= 1


def test_pacing_caps_activity_count(service, make_destination, make_activity):
    """Relaxed days hold fewer activities than packed ones"""
    activities = [make_activity(id=f"a{i}", duration=45) for i in range(10)]
    relaxed = _plan(service, make_destination(), activities, pacing=PacePreference.RELAXED, max_activities=10)
    packed = _plan(service, make_destination(), activities, pacing=PacePreference.PACKED, max_activities=10)
    assert len(relaxed.activities) == 3
    assert len(packed.activities) == 8
    assert service.config_for(PacePreference.RELAXED).activity_buffer == 30


def test_empty_window_raises(service, make_destination):
    """A day that ends before it starts cannot be planned"""
    with pytest.raises(DayPlanningError):
        _plan(service, make_destination(), [], start_time=time(18, 0), end_time=time(9, 0))


def test_filters_location_type_and_access(service, make_destination, make_activity, accessible):
    """Only local, wanted and, when needed, accessible activities are considered"""
    local = make_activity(id="local", accessibility=accessible)
    elsewhere = make_activity(id="elsewhere", location="Berlin")
    shopping = make_activity(id="shopping", category="shopping", accessibility=accessible)
    steps = make_activity(id="steps")
    winter_only = make_activity(id="winter", seasonality=["winter"], accessibility=accessible)

    preferences = DayPlanningPreferences(activity_types=["cultural"], accessibility=True)
    suitable = service.filter_activities(
        [local, elsewhere, shopping, steps, winter_only], make_destination(), DAY, preferences
    )
    assert [a.id for a in suitable] == ["local"]


def test_activity_priorities(service, make_destination, make_activity):
    """Requested types rank high, bookable activities medium"""
    activities = [
        make_activity(id="museum", duration=60, booking_required=True),
        make_activity(id="mall", duration=60, category="shopping"),
    ]
    plan = _plan(service, make_destination(), activities)
    priorities = {a.id: a.priority for a in plan.activities}
    assert priorities == {"museum": ActivityPriority.MEDIUM, "mall": ActivityPriority.LOW}

    wanted = _plan(service, make_destination(), activities, activity_types=["cultural"])
    assert [(a.id, a.priority) for a in wanted.activities] == [("museum", ActivityPriority.HIGH)]


def test_costs_are_converted_to_plan_currency(service, make_destination, make_activity):
    """Foreign-currency costs are converted before summing"""
    plan = _plan(
        service, make_destination(), [make_activity(cost=17, currency="EUR")],
        budget_for_day=Money(amount=Decimal("500"), currency="USD"),
    )
    assert plan.total_cost.currency == "USD"
    assert plan.total_cost.amount == Decimal("20")


def test_optimize_keeps_activity_set(service, make_destination, make_activity, three_meals):
    """Re-packing changes timing, never the activities"""
    plan = _plan(
        service, make_destination(),
        [make_activity(id="a", duration=60), make_activity(id="b", duration=90)],
        meal_preferences=three_meals,
    )
    optimized = asyncio.run(service.optimize_day_schedule(plan))
    assert sorted(a.id for a in optimized.activities) == sorted(a.id for a in plan.activities)
    assert service.validate_day_plan(optimized).valid


def test_validation_flags_overlap_and_budget(service, make_destination, make_activity):
    """Overlapping activities are errors, overspending is a warning"""
    first = ScheduledActivity(
        activity=make_activity(id="a"),
        scheduled_time=TimeSlot(start_time=time(10, 0), end_time=time(12, 0), duration=120),
    )
    second = ScheduledActivity(
        activity=make_activity(id="b"),
        scheduled_time=TimeSlot(start_time=time(11, 0), end_time=time(13, 0), duration=120),
    )
    plan = DayPlan(
        date=DAY,
        destination=make_destination(),
        activities=[first, second],
        total_cost=Money(amount=Decimal("300"), currency="USD"),
        budget_for_day=Money(amount=Decimal("100"), currency="USD"),
        accessibility_required=True,
    )
    validation = service.validate_day_plan(plan)
    assert not validation.valid
    errors = [i for i in validation.issues if i.severity == Severity.ERROR]
    assert errors[0].affected_items == ["a", "b"]
    kinds = {i.type for i in validation.issues}
    assert {"timing", "budget", "accessibility"} <= kinds
    assert validation.suggestions
    assert validation.overall_score < 1


def test_free_time_between_events(service, make_destination, make_activity):
    """Gaps longer than half an hour become free time"""
    plan = _plan(service, make_destination(), [make_activity(duration=60)])
    assert plan.free_time
    assert all(slot.duration > 30 for slot in plan.free_time)


def test_free_time_runs_to_end_of_day(service, make_destination, make_activity, three_meals):
    """Dinner after the day window does not swallow the afternoon"""
    plan = _plan(service, make_destination(), [make_activity(duration=60)], meal_preferences=three_meals)
    assert [(a.scheduled_time.start_time, a.scheduled_time.end_time) for a in plan.activities] == [(time(9, 30), time(10, 30))]
    assert [(s.start_time, s.end_time) for s in plan.free_time] == [
        (time(10, 30), time(12, 30)),
        (time(13, 30), time(18, 0)),
    ]

    relaxed = _plan(
        service, make_destination(), [make_activity(duration=60)],
        meal_preferences=three_meals, pacing=PacePreference.RELAXED,
    )
    assert relaxed.free_time[-1].end_time == time(18, 0)
    messages = [i.message for i in service.validate_day_plan(relaxed).issues]
    assert "Limited free time for a relaxed pace preference" not in messages


def test_optimize_scores_against_requested_types(service, make_destination, make_activity, three_meals):
    """Re-packing keeps the requested activity types for scoring"""
    plan = _plan(
        service, make_destination(),
        [make_activity(id="a", duration=60), make_activity(id="b", duration=90)],
        meal_preferences=three_meals, activity_types=["cultural", "adventure", "nature"],
    )
    assert plan.activity_types == ["cultural", "adventure", "nature"]
    optimized = asyncio.run(service.optimize_day_schedule(plan))
    assert optimized.satisfaction == pytest.approx(plan.satisfaction)
