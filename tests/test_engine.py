import asyncio
import random
from datetime import date, timedelta
from decimal import Decimal

import pytest

from itinerary_engine.models.request_models import EngineOptions, GenerationRequest
from itinerary_engine.services.caching_service import CachingService
from itinerary_engine.services.currency_converter import CurrencyConverter
from itinerary_engine.services.day_planning_service import DayPlanningService
from itinerary_engine.services.destination_sequencing_service import DestinationSequencingService
from itinerary_engine.services.generation_engine import ItineraryGenerationEngine, build_default_engine
from itinerary_engine.services.preference_matching_service import PreferenceMatchingService
from itinerary_engine.services.pricing_calculation_service import PricingCalculationService
from itinerary_engine.utils.config import Settings


class FlakyDayPlanner(DayPlanningService):
    """Fails the first `failures` calls, then plans normally"""

    def __init__(self, converter, failures=1):
        super().__init__(converter=converter)
        self.failures = failures

    async def plan_day(self, *args, **kwargs):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("planner unavailable")
        return await super().plan_day(*args, **kwargs)


class SlowDayPlanner(DayPlanningService):
    async def plan_day(self, *args, **kwargs):
        await asyncio.sleep(1)
        return await super().plan_day(*args, **kwargs)


def _engine(planner=None, options=None):
    converter = CurrencyConverter()
    return ItineraryGenerationEngine(
        preference_service=PreferenceMatchingService(),
        sequencing_service=DestinationSequencingService(rng=random.Random(3)),
        day_planning_service=planner(converter) if planner else DayPlanningService(converter=converter),
        pricing_service=PricingCalculationService(converter=converter),
        caching_service=CachingService(),
        options=options or EngineOptions(),
        converter=converter,
        settings=Settings(),
    )


@pytest.fixture
def paris_content(make_activity, make_accommodation, make_destination):
    activities = [make_activity(id=f"museum_{i}", tags=["cultural"]) for i in range(20)]
    return activities + [make_accommodation(id="hotel_3", star_rating=3), make_destination()]


def test_paris_trip(paris_preferences, paris_content):
    """Thirteen days in Paris for four: one planned day per date, priced, summarised"""
    engine = _engine()
    request = GenerationRequest(preferences=paris_preferences, available_content=paris_content)
    result = asyncio.run(engine.generate_itinerary(request))

    assert result.success, result.error
    assert not result.fallback_used
    itinerary = result.itinerary
    assert len(itinerary.days) == 13
    assert [d.date for d in itinerary.days] == [date(2025, 6, 1) + timedelta(days=i) for i in range(13)]
    assert [d.day_number for d in itinerary.days] == list(range(1, 14))
    assert itinerary.total_estimated_cost.currency == "USD"
    assert itinerary.total_estimated_cost.amount > 0
    assert itinerary.total_estimated_cost.amount <= paris_preferences.budget_max

    scheduled = [a.id for d in itinerary.days for a in d.activities]
    assert scheduled
    assert len(scheduled) == len(set(scheduled))
    assert all(d.accommodation.id == "hotel_3" for d in itinerary.days)
    assert all(len(d.meals) == 3 for d in itinerary.days)

    breakdown = itinerary.cost_breakdown
    assert sum(d.total.amount for d in breakdown.by_day) == breakdown.total.amount
    assert itinerary.summary.total_activities == len(scheduled)
    assert itinerary.summary.unique_destinations == 1
    assert itinerary.summary.cultural_immersion.value == "deep"

    metadata = result.metadata
    assert {"content_matching", "destination_sequencing", "day_planning", "pricing", "assembly"} <= set(metadata.stage_timings_ms)
    assert {"parallel_matching", "parallel_day_planning"} <= set(metadata.optimization_applied)
    assert metadata.component_counts.activities_matched == 20
    assert metadata.component_counts.activities_scheduled == len(scheduled)
    assert result.cache_key


def test_sequential_pipeline_gives_same_shape(paris_preferences, paris_content):
    engine = _engine(options=EngineOptions(enable_parallel_processing=False, cache_enabled=False))
    request = GenerationRequest(preferences=paris_preferences, available_content=paris_content)
    result = asyncio.run(engine.generate_itinerary(request))
    assert result.success
    assert len(result.itinerary.days) == 13
    assert "parallel_matching" not in result.metadata.optimization_applied
    assert result.cache_key is None


def test_invalid_dates_fail_before_any_stage(paris_preferences):
    """Validation errors stop the run before any work is timed"""
    engine = _engine()
    prefs = paris_preferences.model_copy(update={"end_date": date(2025, 5, 20)})
    result = asyncio.run(engine.generate_itinerary(GenerationRequest(preferences=prefs)))

    assert not result.success
    assert result.error.code == "VALIDATION_FAILED"
    assert result.error.details["errors"][0]["code"] == "INVALID_DATE_RANGE"
    assert engine.performance_monitor.get_metrics() == {}
    assert result.metadata.stage_timings_ms == {}


def test_stage_failure_triggers_fallback(paris_preferences, paris_content):
    """A failing stage is retried once in degraded mode"""
    engine = _engine(planner=lambda converter: FlakyDayPlanner(converter))
    request = GenerationRequest(preferences=paris_preferences, available_content=paris_content)
    result = asyncio.run(engine.generate_itinerary(request))

    assert result.success
    assert result.fallback_used
    assert result.original_error == "planner unavailable"
    assert result.metadata.optimization_applied[0] == "fallback"
    assert "parallel_day_planning" not in result.metadata.optimization_applied
    assert len(result.itinerary.days) == 13
    assert engine.get_engine_status().fallback_generations == 1

    # degraded results are not cached
    assert not engine.caching_service.has(engine.caching_service.generate_cache_key(paris_preferences))


def test_failure_without_fallback(paris_preferences, paris_content):
    engine = _engine(planner=lambda converter: FlakyDayPlanner(converter))
    request = GenerationRequest(
        preferences=paris_preferences,
        available_content=paris_content,
        options=EngineOptions(fallback_strategies=False),
    )
    result = asyncio.run(engine.generate_itinerary(request))

    assert not result.success
    assert result.error.code == "GENERATION_FAILED"
    assert result.error.details == {"cause": "RuntimeError", "stage": "day_planning"}
    assert not result.fallback_used


def test_fallback_failure_reports_both_errors(paris_preferences, paris_content):
    engine = _engine(planner=lambda converter: FlakyDayPlanner(converter, failures=1000))
    request = GenerationRequest(preferences=paris_preferences, available_content=paris_content)
    result = asyncio.run(engine.generate_itinerary(request))

    assert not result.success
    assert result.error.code == "GENERATION_FAILED"
    assert result.error.details["original_cause"] == "RuntimeError"
    assert result.error.details["original_stage"] == "day_planning"
    assert result.fallback_used
    status = engine.get_engine_status()
    assert (status.failed_generations, status.fallback_generations) == (1, 1)


def test_deadline_is_enforced(paris_preferences, paris_content):
    """Runs that overshoot the performance target time out"""
    engine = _engine(planner=lambda converter: SlowDayPlanner(converter=converter))
    request = GenerationRequest(
        preferences=paris_preferences,
        available_content=paris_content,
        options=EngineOptions(performance_target_ms=50),
    )
    result = asyncio.run(engine.generate_itinerary(request))
    assert not result.success
    assert result.error.details["cause"] == "GenerationTimeoutError"
    assert result.error.details["original_cause"] == "GenerationTimeoutError"


def test_repeat_request_is_served_from_cache(paris_preferences, paris_content):
    engine = _engine()
    request = GenerationRequest(preferences=paris_preferences, available_content=paris_content)
    first = asyncio.run(engine.generate_itinerary(request))
    second = asyncio.run(engine.generate_itinerary(request))

    assert second.success
    assert second.metadata.cache_hit
    assert second.metadata.optimization_applied == ["cache"]
    assert second.cache_key == first.cache_key
    assert second.itinerary.id == first.itinerary.id
    assert engine.caching_service.get_stats().hits == 1


def test_over_budget_trip_is_optimized(make_activity, make_accommodation, paris_preferences):
    """Without destination content the primary destination is used, and costs are trimmed to budget"""
    engine = _engine()
    prefs = paris_preferences.model_copy(update={
        "end_date": date(2025, 6, 4),
        "budget_min": None,
        "budget_max": Decimal("2000"),
        "accommodation_type": None,
    })
    content = [make_activity(id=f"museum_{i}", tags=["cultural"]) for i in range(4)]
    content.append(make_accommodation(id="palace", star_rating=4))
    result = asyncio.run(engine.generate_itinerary(GenerationRequest(preferences=prefs, available_content=content)))

    assert result.success
    itinerary = result.itinerary
    assert [d.destination_id for d in itinerary.days] == ["dest_paris"] * 3
    assert "budget_optimization" in result.metadata.optimization_applied
    assert "budget_optimization" in result.metadata.stage_timings_ms
    assert itinerary.days[0].accommodation.star_rating < 4


def test_engine_status(paris_preferences, paris_content):
    engine = _engine()
    asyncio.run(engine.generate_itinerary(GenerationRequest(preferences=paris_preferences, available_content=paris_content)))
    status = engine.get_engine_status()

    assert status.version == "1.0.0"
    assert status.total_generations == 1
    assert status.successful_generations == 1
    assert status.success_rate == 1.0
    assert all(status.services.values())
    assert status.cache.size == 1
    assert status.performance["day_planning"]["count"] == 1


def test_default_engine_is_wired():
    engine = build_default_engine(Settings(GA_SEED=1))
    assert engine.day_planning_service.converter is engine.pricing_service.converter
    assert engine.options.performance_target_ms == 3000


def test_deadline_covers_both_attempts(paris_preferences, paris_content):
    """A run whose attempts both time out still returns within the performance target"""
    engine = _engine(planner=lambda converter: SlowDayPlanner(converter=converter))
    request = GenerationRequest(
        preferences=paris_preferences,
        available_content=paris_content,
        options=EngineOptions(performance_target_ms=200),
    )
    result = asyncio.run(engine.generate_itinerary(request))

    assert not result.success
    assert result.fallback_used
    assert result.metadata.processing_time_ms <= 200 + 50


def test_per_person_budget_trip_is_optimized(paris_preferences, paris_preferences_per_person_budget, paris_content):
    """Held to 2400 a head, the Paris trip is trimmed below its unconstrained cost"""
    engine = _engine(options=EngineOptions(cache_enabled=False))
    roomy = asyncio.run(engine.generate_itinerary(
        GenerationRequest(preferences=paris_preferences, available_content=paris_content)
    ))
    tight = asyncio.run(engine.generate_itinerary(
        GenerationRequest(preferences=paris_preferences_per_person_budget, available_content=paris_content)
    ))

    assert tight.success
    assert "budget_optimization" in tight.metadata.optimization_applied
    assert "budget_optimization" not in roomy.metadata.optimization_applied
    assert tight.itinerary.total_estimated_cost.amount < roomy.itinerary.total_estimated_cost.amount
    assert tight.itinerary.days[0].accommodation.star_rating < 3
