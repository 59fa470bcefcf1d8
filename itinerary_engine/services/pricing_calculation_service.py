import asyncio
import logging
import time
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from itinerary_engine.components.activity import Activity
from itinerary_engine.models.component_models import (
    AccommodationType, Difficulty, Money, TransportationType
)
from itinerary_engine.models.planning_models import (
    BudgetOptimization, CategoryCosts, CostBreakdown, DailyCost, DataSource,
    ExternalDataQuery, PricingContext, ScheduledActivity, Seasonality
)
from itinerary_engine.models.response_models import BudgetOptimizationResult, GeneratedItinerary, ItineraryDay
from itinerary_engine.services.currency_converter import CurrencyConverter
from itinerary_engine.services.day_planning_service import make_slot, to_minutes
from itinerary_engine.utils.geo import travel_minutes

SEASONAL_MULTIPLIERS: Dict[Seasonality, Decimal] = {
    Seasonality.PEAK: Decimal("1.4"),
    Seasonality.SHOULDER: Decimal("1.1"),
    Seasonality.OFF: Decimal("0.8"),
}

REGION_MULTIPLIERS: Dict[str, Decimal] = {
    "US": Decimal("1.0"), "GB": Decimal("1.2"), "FR": Decimal("1.15"), "DE": Decimal("1.1"),
    "IT": Decimal("1.05"), "ES": Decimal("0.9"), "PT": Decimal("0.85"), "GR": Decimal("0.8"),
    "TH": Decimal("0.4"), "VN": Decimal("0.3"), "IN": Decimal("0.35"), "CN": Decimal("0.5"),
    "JP": Decimal("1.3"), "AU": Decimal("1.25"), "NZ": Decimal("1.2"),
}

CITY_COUNTRY_CODES = {
    "paris": "FR", "london": "GB", "new york": "US", "tokyo": "JP",
    "rome": "IT", "barcelona": "ES", "amsterdam": "NL", "berlin": "DE",
    "bangkok": "TH", "sydney": "AU", "toronto": "CA", "mexico city": "MX",
}

CONFIDENCE_FACTORS: Dict[DataSource, float] = {
    DataSource.REAL_TIME: 0.95,
    DataSource.HISTORICAL: 0.85,
    DataSource.ESTIMATED: 0.70,
    DataSource.FALLBACK: 0.50,
}

MEAL_BASE_COSTS = {"breakfast": 15, "lunch": 25, "dinner": 40, "snack": 8}
FALLBACK_PRICE = Decimal("50")
MISC_RATE = Decimal("0.1")

# Advance-booking discounts start beyond two weeks and peak at 60 days
ADVANCE_BOOKING_MIN_DAYS = 14
ADVANCE_BOOKING_FULL_DAYS = 60

ACCOMMODATION_SHARE = Decimal("0.4")
ACTIVITY_SHARE = Decimal("0.5")

CHEAPER_MODES = {
    TransportationType.FLIGHT: TransportationType.TRAIN,
    TransportationType.TRAIN: TransportationType.BUS,
    TransportationType.CAR: TransportationType.BUS,
}

CENT = Decimal("0.01")


def extract_country_code(location: str) -> str:
    lowered = (location or "").lower()
    for city, country in CITY_COUNTRY_CODES.items():
        if city in lowered:
            return country
    return "US"


def seasonality_for(day: date) -> Seasonality:
    if 6 <= day.month <= 8:
        return Seasonality.PEAK
    if 4 <= day.month <= 5 or 9 <= day.month <= 10:
        return Seasonality.SHOULDER
    return Seasonality.OFF


# --- pricing models ---

def _tag(name: str) -> Callable[[Any, PricingContext], float]:
    variants = {name, name.replace("_", " "), name.replace("_", "-")}

    def quantity(component, context: PricingContext) -> float:
        return 1.0 if any(v in (t.lower() for t in component.tags) for v in variants) else 0.0
    return quantity


def _duration_hours(component, context: PricingContext) -> float:
    return component.estimated_duration() / 60


def _challenging(component, context: PricingContext) -> float:
    return 1.0 if getattr(component, "difficulty", None) == Difficulty.CHALLENGING else 0.0


def _stars(component, context: PricingContext) -> float:
    return float(getattr(component, "star_rating", None) or 0)


def _distance_per(km: float) -> Callable[[Any, PricingContext], float]:
    def quantity(component, context: PricingContext) -> float:
        return component.distance_km() / km
    return quantity


class PricingFactor(BaseModel):
    """Each applicable factor scales the price by (1 + multiplier * quantity)."""
    model_config = ConfigDict(frozen=True)

    name: str
    multiplier: Decimal
    quantity: Callable[[Any, PricingContext], float]


class ComponentPricingModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_price: Decimal
    factors: List[PricingFactor] = Field(default_factory=list)
    seasonal_sensitivity: float = 0.0
    advance_booking_discount: Decimal = Decimal("0")
    group_discount_threshold: int = 0
    group_discount_rate: Decimal = Decimal("0")
    per_person: bool = False


def _factor(name: str, multiplier: str, quantity=None) -> PricingFactor:
    return PricingFactor(name=name, multiplier=Decimal(multiplier), quantity=quantity or _tag(name))


def _model(base: str, factors, sensitivity: float, advance: str, threshold: int, rate: str, per_person=False):
    return ComponentPricingModel(
        base_price=Decimal(base),
        factors=factors,
        seasonal_sensitivity=sensitivity,
        advance_booking_discount=Decimal(advance),
        group_discount_threshold=threshold,
        group_discount_rate=Decimal(rate),
        per_person=per_person,
    )


PRICING_MODELS: Dict[str, ComponentPricingModel] = {
    "activity_sightseeing": _model("25", [
        _factor("duration", "0.5", _duration_hours),
        _factor("group_size", "0.9"),
        _factor("popularity", "1.2"),
    ], 0.3, "0.05", 4, "0.1", per_person=True),
    "activity_adventure": _model("75", [
        _factor("difficulty", "1.3", _challenging),
        _factor("equipment_included", "1.4"),
        _factor("guide_included", "1.5"),
    ], 0.4, "0.1", 6, "0.15", per_person=True),
    "activity_cultural": _model("35", [
        _factor("museum_entrance", "1.2"),
        _factor("guided_tour", "1.6"),
        _factor("exclusive_access", "2.0"),
    ], 0.2, "0.05", 8, "0.12", per_person=True),
    "activity_culinary": _model("50", [
        _factor("fine_dining", "2.5"),
        _factor("cooking_class", "1.8"),
        _factor("wine_tasting", "1.5"),
    ], 0.25, "0.08", 4, "0.1", per_person=True),
    "accommodation_hotel": _model("120", [
        _factor("star_rating", "0.4", _stars),
        _factor("city_center", "1.3"),
        _factor("business_district", "1.2"),
    ], 0.6, "0.15", 0, "0"),
    "accommodation_resort": _model("200", [
        _factor("all_inclusive", "1.8"),
        _factor("beachfront", "1.4"),
        _factor("spa_included", "1.3"),
    ], 0.8, "0.2", 0, "0"),
    "accommodation_vacation-rental": _model("90", [
        _factor("entire_place", "1.5"),
        _factor("kitchen_included", "1.2"),
        _factor("central_location", "1.3"),
    ], 0.5, "0.1", 0, "0"),
    "transportation_flight": _model("300", [
        _factor("distance", "0.15", _distance_per(1000)),
        _factor("business_class", "3.0"),
        _factor("direct_flight", "1.2"),
    ], 0.9, "0.25", 10, "0.05"),
    "transportation_train": _model("50", [
        _factor("distance", "0.08", _distance_per(100)),
        _factor("high_speed", "1.5"),
        _factor("first_class", "2.0"),
    ], 0.3, "0.15", 6, "0.08"),
    "transportation_car": _model("40", [
        _factor("luxury_vehicle", "2.5"),
        _factor("fuel_cost", "0.1", _distance_per(100)),
        _factor("insurance", "1.2"),
    ], 0.2, "0.1", 0, "0"),
    "transportation_bus": _model("20", [
        _factor("distance", "0.05", _distance_per(100)),
        _factor("express", "0.3"),
        _factor("overnight", "0.2"),
    ], 0.2, "0.05", 10, "0.05"),
}


class PricingCalculationService:
    def __init__(
        self,
        converter: Optional[CurrencyConverter] = None,
        base_currency: str = "USD",
        cache_ttl_minutes: int = 30,
        contingency_percentage: float = 15.0,
        provider_timeout_seconds: float = 0.5,
        today: Callable[[], date] = date.today,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.converter = converter or CurrencyConverter()
        self.base_currency = base_currency
        self.cache_ttl_seconds = cache_ttl_minutes * 60
        self.contingency_rate = Decimal(str(contingency_percentage)) / 100
        self.provider_timeout_seconds = provider_timeout_seconds
        self.pricing_models = dict(PRICING_MODELS)
        self.providers: Dict[str, Any] = {}
        self._today = today
        self._clock = clock
        self._cache: Dict[str, Tuple[Money, DataSource, float]] = {}
        self.logger = logging.getLogger(__name__)

    # --- providers ---

    def register_external_provider(self, name: str, provider) -> None:
        self.providers[name] = provider
        self.logger.info("[pricing] Registered external provider", extra={"provider": name})

    async def get_real_time_pricing(self, component_id: str) -> Optional[Money]:
        query = ExternalDataQuery(type="pricing", parameters={"component_id": component_id})
        for name, provider in self.providers.items():
            try:
                response = await asyncio.wait_for(
                    provider.get_real_time_data(query), timeout=self.provider_timeout_seconds
                )
            except Exception as e:
                self.logger.warning(
                    "[pricing] Provider lookup failed",
                    extra={"provider": name, "component_id": component_id, "error": repr(e)},
                )
                continue
            price = (response.data or {}).get("price") if response.success else None
            if price and "amount" in price and "currency" in price:
                return Money(amount=Decimal(str(price["amount"])), currency=price["currency"])
        return None

    async def check_provider_health(self) -> Dict[str, bool]:
        health: Dict[str, bool] = {}
        for name, provider in self.providers.items():
            try:
                health[name] = bool(await asyncio.wait_for(provider.health_check(), timeout=self.provider_timeout_seconds))
            except Exception as e:
                self.logger.warning("[pricing] Provider health check failed", extra={"provider": name, "error": repr(e)})
                health[name] = False
        return health

    def supported_currencies(self) -> List[str]:
        return self.converter.supported_currencies()

    def get_service_stats(self) -> Dict[str, Any]:
        return {
            "cache_size": len(self._cache),
            "supported_currencies": self.supported_currencies(),
            "external_providers": list(self.providers),
            "pricing_models": {
                key: {"base_price": float(m.base_price), "seasonal_sensitivity": m.seasonal_sensitivity}
                for key, m in self.pricing_models.items()
            },
        }

    # --- single components ---

    def context_for(self, day: date, travelers: int, currency: str) -> PricingContext:
        return PricingContext(
            start_date=day,
            end_date=day,
            travelers=max(travelers, 1),
            seasonality=seasonality_for(day),
            advance_booking_days=max(0, (day - self._today()).days),
            currency=currency,
        )

    async def estimate_component_cost(self, component, context: PricingContext) -> Money:
        cost, _ = await self.estimate_with_source(component, context)
        return cost

    async def estimate_with_source(self, component, context: PricingContext) -> Tuple[Money, DataSource]:
        key = (
            f"{component.id}_{context.start_date.isoformat()}_{context.travelers}_"
            f"{context.seasonality.value}_{context.currency}"
        )
        cached = self._cache.get(key)
        if cached and cached[2] > self._clock():
            return cached[0], cached[1]

        real_time = await self.get_real_time_pricing(component.id)
        if real_time is not None:
            cost, source = self.converter.convert_money(real_time, context.currency), DataSource.REAL_TIME
        else:
            cost, source = self._model_cost(component, context)

        cost = cost.scaled(SEASONAL_MULTIPLIERS[context.seasonality])
        region = extract_country_code(component.pricing_location())
        cost = cost.scaled(REGION_MULTIPLIERS.get(region, Decimal("1.0"))).rounded()

        self._cache[key] = (cost, source, self._clock() + self.cache_ttl_seconds)
        return cost, source

    def _model_cost(self, component, context: PricingContext) -> Tuple[Money, DataSource]:
        model = self.pricing_models.get(component.pricing_key())
        if model is None:
            if component.estimated_cost:
                return self.converter.convert_money(component.estimated_cost, context.currency), DataSource.HISTORICAL
            return Money(amount=FALLBACK_PRICE, currency=context.currency), DataSource.FALLBACK

        cost = model.base_price
        for factor in model.factors:
            quantity = factor.quantity(component, context)
            if quantity:
                cost *= 1 + factor.multiplier * Decimal(str(quantity))

        if model.group_discount_rate and context.travelers >= model.group_discount_threshold:
            cost *= 1 - model.group_discount_rate

        if context.advance_booking_days > ADVANCE_BOOKING_MIN_DAYS:
            scale = min(Decimal(context.advance_booking_days) / ADVANCE_BOOKING_FULL_DAYS, Decimal(1))
            cost *= 1 - model.advance_booking_discount * scale

        if model.per_person:
            cost *= context.travelers

        estimate = Money(amount=cost.quantize(CENT), currency=self.base_currency)
        return self.converter.convert_money(estimate, context.currency), DataSource.ESTIMATED

    def meal_cost(self, meal, context: PricingContext) -> Money:
        if meal.estimated_cost:
            per_person = self.converter.convert_money(meal.estimated_cost, context.currency)
        else:
            base = Money(amount=Decimal(MEAL_BASE_COSTS.get(meal.type.value, 25)), currency=self.base_currency)
            per_person = self.converter.convert_money(base, context.currency)
        return per_person.scaled(context.travelers)

    # --- whole itineraries ---

    async def calculate_itinerary_cost(self, itinerary: GeneratedItinerary) -> CostBreakdown:
        currency = itinerary.preferences.currency
        travelers = itinerary.preferences.traveler_count()
        totals = CategoryCosts.zero(currency)
        by_day: List[DailyCost] = []
        sources: Dict[str, int] = {}

        for day in itinerary.days:
            context = self.context_for(day.date, travelers, currency)
            costs = CategoryCosts.zero(currency)

            if day.accommodation:
                cost, source = await self.estimate_with_source(day.accommodation, context)
                costs.accommodation = cost
                sources[source.value] = sources.get(source.value, 0) + 1
            for item in day.activities:
                cost, source = await self.estimate_with_source(item.activity, context)
                costs.activities = costs.activities + cost
                sources[source.value] = sources.get(source.value, 0) + 1
            for leg in day.transportation:
                cost, source = await self.estimate_with_source(leg, context)
                costs.transportation = costs.transportation + cost
                sources[source.value] = sources.get(source.value, 0) + 1
            for meal in day.meals:
                costs.meals = costs.meals + self.meal_cost(meal, context)

            costs.miscellaneous = costs.total().scaled(MISC_RATE).rounded()
            by_day.append(DailyCost(date=day.date, total=costs.total().rounded(), breakdown=costs))

            totals = CategoryCosts(
                accommodation=totals.accommodation + costs.accommodation,
                activities=totals.activities + costs.activities,
                transportation=totals.transportation + costs.transportation,
                meals=totals.meals + costs.meals,
                miscellaneous=totals.miscellaneous + costs.miscellaneous,
            )

        total = totals.total().rounded()
        priced = sum(sources.values())
        confidence = (
            sum(CONFIDENCE_FACTORS[DataSource(name)] * count for name, count in sources.items()) / priced
            if priced else 0.5
        )
        return CostBreakdown(
            total=total,
            by_category=totals,
            by_day=by_day,
            contingency=total.scaled(self.contingency_rate).rounded(),
            confidence=confidence,
            sources=sources,
        )

    async def optimize_for_budget(
        self,
        itinerary: GeneratedItinerary,
        max_budget: Money,
        alternative_activities: Optional[List[Activity]] = None,
    ) -> BudgetOptimizationResult:
        """Cut cost toward `max_budget` by downgrading stays, then activities, then transport.

        A change is kept only when re-pricing shows it is cheaper, so the
        result never costs more than the input.
        """
        original = await self._total_in(itinerary, max_budget.currency)
        if original.amount <= max_budget.amount:
            return BudgetOptimizationResult(
                optimized_itinerary=itinerary,
                cost_reduction=Money.zero(max_budget.currency),
                original_cost=original,
                final_cost=original,
            )

        gap = original.amount - max_budget.amount
        changes: List[BudgetOptimization] = []
        tradeoffs: List[str] = []
        current, current_total = itinerary, original

        # Step 1: accommodation downgrades, aiming at 40% of the gap
        target = current_total.amount - gap * ACCOMMODATION_SHARE
        current, current_total = await self._apply_candidates(
            current, current_total, target, self._accommodation_downgrades, changes, tradeoffs
        )

        # Step 2: activity substitution or removal, half of what is left
        remaining = current_total.amount - max_budget.amount
        if remaining > 0:
            target = current_total.amount - remaining * ACTIVITY_SHARE
            pool = alternative_activities or []
            current, current_total = await self._apply_candidates(
                current, current_total, target,
                lambda itin: self._activity_reductions(itin, pool), changes, tradeoffs
            )

        # Step 3: cheaper transportation modes for the rest
        if current_total.amount > max_budget.amount:
            current, current_total = await self._apply_candidates(
                current, current_total, max_budget.amount, self._transport_changes, changes, tradeoffs
            )

        breakdown = await self.calculate_itinerary_cost(current)
        current = current.model_copy(update={
            "cost_breakdown": breakdown,
            "total_estimated_cost": breakdown.total,
            "days": self._with_day_totals(current.days, breakdown),
        })
        self.logger.info(
            "[pricing] Budget optimization finished",
            extra={
                "original": str(original.amount),
                "final": str(current_total.amount),
                "budget": str(max_budget.amount),
                "changes": len(changes),
            },
        )
        return BudgetOptimizationResult(
            optimized_itinerary=current,
            cost_reduction=(original - current_total).rounded(),
            changes_applied=changes,
            tradeoffs=tradeoffs,
            original_cost=original,
            final_cost=current_total,
        )

    async def _total_in(self, itinerary: GeneratedItinerary, currency: str) -> Money:
        breakdown = await self.calculate_itinerary_cost(itinerary)
        return self.converter.convert_money(breakdown.total, currency).rounded()

    async def _apply_candidates(self, itinerary, total: Money, target: Decimal, generate, changes, tradeoffs):
        """Try candidate rewrites one by one until the total drops to `target` or none are left."""
        progress = True
        while progress and total.amount > target:
            progress = False
            for candidate, change, tradeoff in generate(itinerary):
                new_total = await self._total_in(candidate, total.currency)
                if new_total.amount >= total.amount:
                    continue
                change.savings = total - new_total
                changes.append(change)
                tradeoffs.append(tradeoff)
                itinerary, total = candidate, new_total
                progress = True
                break
        return itinerary, total

    def _accommodation_downgrades(self, itinerary: GeneratedItinerary):
        seen = set()
        for day in itinerary.days:
            stay = day.accommodation
            if stay is None or stay.id in seen:
                continue
            seen.add(stay.id)
            if stay.type == AccommodationType.RESORT:
                cheaper = stay.clone(id=f"{stay.id}-hotel", type=AccommodationType.HOTEL)
                description = f"{stay.title}: resort replaced by hotel standard"
            elif stay.star_rating and stay.star_rating > 1:
                cheaper = stay.clone(id=f"{stay.id}-{stay.star_rating - 1}star", star_rating=stay.star_rating - 1)
                description = f"{stay.title}: {stay.star_rating}-star downgraded to {stay.star_rating - 1}-star"
            else:
                continue
            days = [
                d.model_copy(update={"accommodation": cheaper}) if d.accommodation and d.accommodation.id == stay.id else d
                for d in itinerary.days
            ]
            yield (
                itinerary.model_copy(update={"days": days}),
                BudgetOptimization(
                    strategy="accommodation_downgrade",
                    component_id=stay.id,
                    replacement_id=cheaper.id,
                    description=description,
                    savings=Money.zero(itinerary.preferences.currency),
                ),
                f"Lower accommodation standard at {stay.location}",
            )

    def _activity_reductions(self, itinerary: GeneratedItinerary, pool: List[Activity]):
        used = {a.activity.id for d in itinerary.days for a in d.activities}
        for index, day in enumerate(itinerary.days):
            ranked = sorted(day.activities, key=self._activity_sort_cost, reverse=True)
            for item in ranked:
                alternative = next(
                    (
                        alt for alt in pool
                        if alt.id not in used
                        and alt.category == item.activity.category
                        and alt.estimated_duration() <= item.scheduled_time.duration
                        and day.location.lower() in alt.location.lower()
                        and self._activity_sort_cost_raw(alt) < self._activity_sort_cost(item)
                    ),
                    None,
                )
                if alternative is not None:
                    replacement = ScheduledActivity(
                        activity=alternative,
                        scheduled_time=self._retimed(item, alternative),
                        buffer_time=item.buffer_time,
                        priority=item.priority,
                    )
                    activities = [replacement if a is item else a for a in day.activities]
                    yield (
                        self._replace_day(itinerary, index, day.model_copy(update={"activities": activities})),
                        BudgetOptimization(
                            strategy="activity_substitution",
                            component_id=item.activity.id,
                            replacement_id=alternative.id,
                            description=f"{item.title} replaced by {alternative.title}",
                            savings=Money.zero(itinerary.preferences.currency),
                        ),
                        f"Swap {item.title} for the cheaper {alternative.title} on day {day.day_number}",
                    )
                if len(day.activities) > 1 and not item.activity.booking_required:
                    activities = [a for a in day.activities if a is not item]
                    yield (
                        self._replace_day(itinerary, index, day.model_copy(update={"activities": activities})),
                        BudgetOptimization(
                            strategy="activity_substitution",
                            component_id=item.activity.id,
                            description=f"{item.title} removed",
                            savings=Money.zero(itinerary.preferences.currency),
                        ),
                        f"Skip {item.title} on day {day.day_number}",
                    )

    def _transport_changes(self, itinerary: GeneratedItinerary):
        for index, day in enumerate(itinerary.days):
            for leg in day.transportation:
                mode = CHEAPER_MODES.get(leg.type)
                if mode is None:
                    continue
                minutes = max(10, travel_minutes(leg.distance_km(), mode.value))
                cheaper = leg.clone(
                    id=f"{leg.id}-{mode.value}",
                    type=mode,
                    carrier=None,
                    duration=minutes,
                    arrival_time=leg.departure_time + timedelta(minutes=minutes),
                )
                legs = [cheaper if t is leg else t for t in day.transportation]
                yield (
                    self._replace_day(itinerary, index, day.model_copy(update={"transportation": legs})),
                    BudgetOptimization(
                        strategy="transportation_change",
                        component_id=leg.id,
                        replacement_id=cheaper.id,
                        description=f"{leg.type.value} from {leg.from_location} to {leg.to_location} replaced by {mode.value}",
                        savings=Money.zero(itinerary.preferences.currency),
                    ),
                    f"Travel {leg.from_location} to {leg.to_location} by {mode.value} ({cheaper.formatted_duration()})",
                )

    @staticmethod
    def _replace_day(itinerary: GeneratedItinerary, index: int, day: ItineraryDay) -> GeneratedItinerary:
        days = list(itinerary.days)
        days[index] = day
        return itinerary.model_copy(update={"days": days})

    @staticmethod
    def _retimed(item: ScheduledActivity, activity: Activity):
        start = to_minutes(item.scheduled_time.start_time)
        return make_slot(start, start + activity.estimated_duration())

    @staticmethod
    def _activity_sort_cost_raw(activity: Activity) -> Decimal:
        return activity.estimated_cost.amount if activity.estimated_cost else Decimal("0")

    def _activity_sort_cost(self, item: ScheduledActivity) -> Decimal:
        return self._activity_sort_cost_raw(item.activity)

    @staticmethod
    def _with_day_totals(days: List[ItineraryDay], breakdown: CostBreakdown) -> List[ItineraryDay]:
        totals = {d.date: d.total for d in breakdown.by_day}
        return [d.model_copy(update={"total_estimated_cost": totals.get(d.date, d.total_estimated_cost)}) for d in days]
