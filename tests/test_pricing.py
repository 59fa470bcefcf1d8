import asyncio
import pytest
from datetime import date, time
from decimal import Decimal

from itinerary_engine.models.component_models import Coordinates, Money, TimeSlot
from itinerary_engine.models.planning_models import DataSource, ExternalDataResponse, ScheduledActivity, Seasonality
from itinerary_engine.models.request_models import UserPreferences
from itinerary_engine.models.response_models import GeneratedItinerary, ItineraryDay
from itinerary_engine.services.pricing_calculation_service import (
    PricingCalculationService, extract_country_code, seasonality_for
)

WINTER_DAY = date(2025, 1, 6)
PARIS = Coordinates(latitude=48.8566, longitude=2.3522)


class FixedPriceProvider:
    def __init__(self, amount, currency="USD", delay=0.0):
        self.amount = amount
        self.currency = currency
        self.delay = delay
        self.calls = 0

    async def get_real_time_data(self, query):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return ExternalDataResponse(
            success=True,
            data={"price": {"amount": self.amount, "currency": self.currency}},
            source="fixed",
        )

    async def health_check(self):
        return True

    def get_usage_stats(self):
        return {"calls": self.calls}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(clock):
    return PricingCalculationService(today=lambda: date(2025, 1, 1), clock=clock)


def _itinerary(days, start=WINTER_DAY, adults=2):
    preferences = UserPreferences(
        start_date=start,
        end_date=date.fromordinal(start.toordinal() + len(days)),
        primary_destination="Paris",
        adults=adults,
        currency="USD",
    )
    return GeneratedItinerary(
        id="itin_test",
        title="Paris",
        description="Test trip",
        days=days,
        total_duration=len(days),
        total_estimated_cost=Money.zero("USD"),
        preferences=preferences,
    )


def _day(number, accommodation=None, activities=(), transportation=(), start=WINTER_DAY):
    return ItineraryDay(
        id=f"day_{number}",
        day_number=number,
        date=date.fromordinal(start.toordinal() + number - 1),
        title=f"Day {number} in Paris",
        destination_id="dest_paris",
        location="Paris",
        coordinates=PARIS,
        accommodation=accommodation,
        activities=list(activities),
        transportation=list(transportation),
        total_estimated_cost=Money.zero("USD"),
    )


def _scheduled(activity):
    return ScheduledActivity(
        activity=activity,
        scheduled_time=TimeSlot(start_time=time(10, 0), end_time=time(12, 0), duration=120),
    )


def test_helpers():
    assert extract_country_code("Le Marais, Paris") == "FR"
    assert extract_country_code("Atlantis") == "US"
    assert seasonality_for(date(2025, 7, 14)) == Seasonality.PEAK
    assert seasonality_for(date(2025, 10, 1)) == Seasonality.SHOULDER
    assert seasonality_for(date(2025, 2, 1)) == Seasonality.OFF


def test_hotel_estimate(service, make_accommodation):
    """Base price, star factor, season and region multiply together"""
    context = service.context_for(WINTER_DAY, travelers=2, currency="USD")
    cost, source = asyncio.run(service.estimate_with_source(make_accommodation(star_rating=3), context))
    # 120 * (1 + 0.4 * 3) * 0.8 off season * 1.15 France
    assert cost.amount == Decimal("242.88")
    assert cost.currency == "USD"
    assert source == DataSource.ESTIMATED


def test_peak_season_costs_more(service, make_accommodation):
    hotel = make_accommodation()
    winter = asyncio.run(service.estimate_component_cost(hotel, service.context_for(WINTER_DAY, 2, "USD")))
    summer = asyncio.run(service.estimate_component_cost(hotel, service.context_for(date(2025, 7, 1), 2, "USD")))
    assert summer.amount > winter.amount


def test_per_person_activities(service, make_activity):
    """Activity models scale with travelers"""
    museum = make_activity()
    one = asyncio.run(service.estimate_component_cost(museum, service.context_for(WINTER_DAY, 1, "USD")))
    two = asyncio.run(service.estimate_component_cost(museum, service.context_for(WINTER_DAY, 2, "USD")))
    assert two.amount == one.amount * 2


def test_unmodelled_components_use_listed_cost_or_fallback(service, make_activity):
    """No pricing model: the listed cost, else a flat fallback"""
    context = service.context_for(WINTER_DAY, 2, "USD")
    listed = make_activity(id="mall", category="shopping", cost=17, currency="EUR")
    cost, source = asyncio.run(service.estimate_with_source(listed, context))
    assert source == DataSource.HISTORICAL
    # 17 EUR is 20 USD before adjustments
    assert cost.amount == Decimal("18.40")

    _, source = asyncio.run(service.estimate_with_source(make_activity(id="bare", category="shopping"), context))
    assert source == DataSource.FALLBACK


def test_real_time_provider_wins(service, make_accommodation):
    """A provider price replaces the model estimate"""
    service.register_external_provider("fixed", FixedPriceProvider(100))
    cost, source = asyncio.run(service.estimate_with_source(make_accommodation(), service.context_for(WINTER_DAY, 2, "USD")))
    assert source == DataSource.REAL_TIME
    assert cost.amount == Decimal("92.00")


def test_slow_provider_falls_back_to_model(clock, make_accommodation):
    """Providers that miss the timeout are skipped"""
    service = PricingCalculationService(provider_timeout_seconds=0.01, today=lambda: date(2025, 1, 1), clock=clock)
    service.register_external_provider("slow", FixedPriceProvider(100, delay=0.5))
    _, source = asyncio.run(service.estimate_with_source(make_accommodation(), service.context_for(WINTER_DAY, 2, "USD")))
    assert source == DataSource.ESTIMATED


def test_estimates_are_cached_until_expiry(service, clock, make_accommodation):
    provider = FixedPriceProvider(100)
    service.register_external_provider("fixed", provider)
    context = service.context_for(WINTER_DAY, 2, "USD")
    hotel = make_accommodation()

    asyncio.run(service.estimate_component_cost(hotel, context))
    asyncio.run(service.estimate_component_cost(hotel, context))
    assert provider.calls == 1

    clock.now += 31 * 60
    asyncio.run(service.estimate_component_cost(hotel, context))
    assert provider.calls == 2


def test_itinerary_breakdown(service, make_accommodation, make_activity):
    """Categories, miscellaneous share, contingency and per-day totals"""
    hotel = make_accommodation(id="hotel", star_rating=4)
    itinerary = _itinerary([
        _day(1, hotel, [_scheduled(make_activity(id="a"))]),
        _day(2, hotel, [_scheduled(make_activity(id="b"))]),
    ])
    breakdown = asyncio.run(service.calculate_itinerary_cost(itinerary))

    assert breakdown.total.amount == Decimal("773.16")
    assert breakdown.by_category.accommodation.amount == Decimal("574.08")
    assert len(breakdown.by_day) == 2
    assert sum(d.total.amount for d in breakdown.by_day) == breakdown.total.amount
    assert breakdown.contingency.amount == (breakdown.total.amount * Decimal("0.15")).quantize(Decimal("0.01"))
    assert breakdown.sources == {"estimated": 4}
    assert breakdown.confidence == pytest.approx(0.7)


def test_within_budget_is_unchanged(service, make_accommodation, make_activity):
    itinerary = _itinerary([_day(1, make_accommodation(), [_scheduled(make_activity())])])
    result = asyncio.run(service.optimize_for_budget(itinerary, Money(amount=Decimal("5000"), currency="USD")))
    assert result.optimized_itinerary is itinerary
    assert result.cost_reduction.amount == 0
    assert result.changes_applied == []


def test_budget_optimization_downgrades_stay_first(service, make_accommodation, make_activity):
    """Downgrading the hotel closes the gap and never raises the cost"""
    hotel = make_accommodation(id="hotel", star_rating=4)
    itinerary = _itinerary([
        _day(1, hotel, [_scheduled(make_activity(id="a"))]),
        _day(2, hotel, [_scheduled(make_activity(id="b"))]),
    ])
    budget = Money(amount=Decimal("700"), currency="USD")
    result = asyncio.run(service.optimize_for_budget(itinerary, budget))

    assert result.final_cost.amount <= result.original_cost.amount
    assert result.final_cost.amount <= budget.amount
    assert result.cost_reduction.amount > 0
    first = result.changes_applied[0]
    assert first.strategy == "accommodation_downgrade"
    assert first.replacement_id == "hotel-3star"
    assert all(d.accommodation.star_rating == 3 for d in result.optimized_itinerary.days)
    assert result.optimized_itinerary.total_estimated_cost == result.final_cost
    assert len(result.tradeoffs) == len(result.changes_applied)


def test_budget_optimization_swaps_activities(service, make_accommodation, make_activity):
    """Cheaper alternatives of the same category replace expensive ones"""
    pricey = make_activity(id="pricey", category="shopping", cost=400, currency="USD")
    cheap = make_activity(id="cheap", category="shopping", cost=10, currency="USD")
    itinerary = _itinerary([_day(1, None, [_scheduled(pricey)])])
    result = asyncio.run(service.optimize_for_budget(
        itinerary, Money(amount=Decimal("50"), currency="USD"), alternative_activities=[cheap]
    ))
    assert [c.replacement_id for c in result.changes_applied] == ["cheap"]
    assert result.optimized_itinerary.days[0].activities[0].id == "cheap"
    assert result.final_cost.amount < result.original_cost.amount


def test_substitutes_must_fit_the_slot(service, make_activity):
    """A cheaper alternative that runs longer than the slot it would take is passed over"""
    def at(activity, start, end):
        return ScheduledActivity(
            activity=activity,
            scheduled_time=TimeSlot(start_time=start, end_time=end, duration=120),
        )

    early = make_activity(id="early", category="shopping", cost=400, currency="USD")
    later = make_activity(id="later", category="shopping", cost=300, currency="USD")
    long_tour = make_activity(id="long", category="shopping", cost=10, currency="USD", duration=480)
    short_visit = make_activity(id="short", category="shopping", cost=20, currency="USD", duration=60)
    itinerary = _itinerary([_day(1, None, [at(early, time(9, 30), time(11, 30)), at(later, time(14, 0), time(16, 0))])])

    result = asyncio.run(service.optimize_for_budget(
        itinerary, Money(amount=Decimal("50"), currency="USD"), alternative_activities=[long_tour, short_visit]
    ))

    assert "long" not in [c.replacement_id for c in result.changes_applied]
    assert "short" in [c.replacement_id for c in result.changes_applied]
    spans = [(a.scheduled_time.start_time, a.scheduled_time.end_time) for a in result.optimized_itinerary.days[0].activities]
    assert spans == sorted(spans)
    assert all(first[1] <= second[0] for first, second in zip(spans, spans[1:]))


def test_budget_optimization_picks_cheaper_transport(service, make_transportation):
    """Flights give way to trains, trains to buses"""
    itinerary = _itinerary([_day(1, transportation=[make_transportation(id="af", type="flight")])])
    result = asyncio.run(service.optimize_for_budget(itinerary, Money(amount=Decimal("1"), currency="USD")))

    strategies = {c.strategy for c in result.changes_applied}
    assert strategies == {"transportation_change"}
    assert result.changes_applied[0].replacement_id == "af-train"
    assert result.final_cost.amount < result.original_cost.amount


def test_service_stats(service):
    stats = service.get_service_stats()
    assert "EUR" in stats["supported_currencies"]
    assert stats["pricing_models"]["accommodation_hotel"]["base_price"] == 120
    assert asyncio.run(service.check_provider_health()) == {}
