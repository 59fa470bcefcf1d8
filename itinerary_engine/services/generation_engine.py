"""
Generation engine: wires matching, sequencing, day planning and pricing into
one time-boxed pipeline, with a single degraded retry when a stage fails.
"""
import asyncio
import logging
import random
import re
import time
import uuid
from datetime import date, datetime, time as clock_time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from itinerary_engine.components.accommodation import Accommodation
from itinerary_engine.components.activity import Activity
from itinerary_engine.components.destination import Destination
from itinerary_engine.components.transportation import Transportation
from itinerary_engine.models.component_models import ActivityCategory, Coordinates, Difficulty, Money
from itinerary_engine.models.planning_models import (
    DayPlanningPreferences, MealPreference, MealStyle, MealType, SequencedDestination, SequencingConstraints
)
from itinerary_engine.models.request_models import EngineOptions, GenerationRequest, UserPreferences
from itinerary_engine.models.response_models import (
    ComponentUsageStats, CulturalImmersion, EngineStatus, GeneratedItinerary, GenerationError,
    GenerationMetadata, GenerationResult, ItineraryDay, ItineraryMetadata, ItinerarySummary,
    PhysicalDemand, ValidationResult
)
from itinerary_engine.services.caching_service import CachingService
from itinerary_engine.services.currency_converter import CurrencyConverter
from itinerary_engine.services.day_planning_service import DayPlanningService
from itinerary_engine.services.destination_sequencing_service import DestinationSequencingService
from itinerary_engine.services.preference_matching_service import PreferenceMatchingService
from itinerary_engine.services.pricing_calculation_service import PricingCalculationService, extract_country_code
from itinerary_engine.utils.config import Settings, get_settings
from itinerary_engine.utils.errors import GenerationTimeoutError
from itinerary_engine.utils.geo import centroid
from itinerary_engine.utils.performance import PerformanceMonitor
from itinerary_engine.utils.validators import PreferenceValidator

CONTENT_KINDS = (
    ("activities", Activity),
    ("accommodations", Accommodation),
    ("transportation", Transportation),
    ("destinations", Destination),
)

FALLBACK_TRANSPORT = ["car", "train", "flight"]

# Per-person meal budgets in USD
DEFAULT_MEAL_PLAN = (
    (MealType.BREAKFAST, clock_time(8, 0), Decimal("25")),
    (MealType.LUNCH, clock_time(12, 30), Decimal("35")),
    (MealType.DINNER, clock_time(19, 0), Decimal("50")),
)
DAY_START = clock_time(9, 0)
DAY_END = clock_time(18, 0)

MAX_HIGHLIGHTS = 10
HIGHLIGHTS_PER_DAY = 2

# Shares of the end-to-end deadline: the primary attempt must finish by 70%,
# leaving the rest for the fallback. Rate refresh may take up to 20%.
PRIMARY_SHARE = 0.7
RATE_REFRESH_SHARE = 0.2
ACTIVE_CATEGORIES = (ActivityCategory.ADVENTURE,)
IMMERSIVE_CATEGORIES = (ActivityCategory.CULTURAL, ActivityCategory.CULINARY)


class MatchedContent(BaseModel):
    """Content that cleared the match threshold, best match first"""
    activities: List[Activity] = Field(default_factory=list)
    accommodations: List[Accommodation] = Field(default_factory=list)
    transportation: List[Transportation] = Field(default_factory=list)
    destinations: List[Destination] = Field(default_factory=list)


def physical_demand(days: List[ItineraryDay]) -> PhysicalDemand:
    activities = [a.activity for d in days for a in d.activities]
    if not activities:
        return PhysicalDemand.LOW
    active = sum(1 for a in activities if a.category in ACTIVE_CATEGORIES or a.difficulty == Difficulty.CHALLENGING)
    ratio = active / len(activities)
    if ratio > 0.6:
        return PhysicalDemand.HIGH
    if ratio > 0.3:
        return PhysicalDemand.MODERATE
    return PhysicalDemand.LOW


def cultural_immersion(days: List[ItineraryDay]) -> CulturalImmersion:
    activities = [a.activity for d in days for a in d.activities]
    if not activities:
        return CulturalImmersion.LIGHT
    ratio = sum(1 for a in activities if a.category in IMMERSIVE_CATEGORIES) / len(activities)
    if ratio > 0.5:
        return CulturalImmersion.DEEP
    if ratio > 0.25:
        return CulturalImmersion.MODERATE
    return CulturalImmersion.LIGHT


def highlights(days: List[ItineraryDay]) -> List[str]:
    titles = [a.title for d in days for a in d.activities[:HIGHLIGHTS_PER_DAY] if a.title]
    return list(dict.fromkeys(titles))[:MAX_HIGHLIGHTS]


class ItineraryGenerationEngine:
    """Orchestrates a generation run. Services are injected; nothing here is global."""

    def __init__(
        self,
        preference_service: PreferenceMatchingService,
        sequencing_service: DestinationSequencingService,
        day_planning_service: DayPlanningService,
        pricing_service: PricingCalculationService,
        caching_service: CachingService,
        options: Optional[EngineOptions] = None,
        performance_monitor: Optional[PerformanceMonitor] = None,
        converter: Optional[CurrencyConverter] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.preference_service = preference_service
        self.sequencing_service = sequencing_service
        self.day_planning_service = day_planning_service
        self.pricing_service = pricing_service
        self.caching_service = caching_service
        self.options = options or EngineOptions.from_settings(self.settings)
        self.performance_monitor = performance_monitor or PerformanceMonitor()
        self.converter = converter or pricing_service.converter
        self.logger = logging.getLogger(__name__)

        self._started_at = time.monotonic()
        self._stats = {"total": 0, "successful": 0, "failed": 0, "fallback": 0}
        self._generation_times: List[float] = []

    # --- public API ---

    def validate_preferences(self, preferences: UserPreferences) -> ValidationResult:
        return PreferenceValidator.validate_complete_preferences(
            preferences,
            max_duration_days=self.settings.MAX_TRIP_DURATION_DAYS,
            max_group_size=self.settings.MAX_GROUP_SIZE,
        )

    @staticmethod
    def trip_duration_days(preferences: UserPreferences) -> int:
        return preferences.trip_duration_days()

    async def generate_itinerary(self, request: GenerationRequest) -> GenerationResult:
        request_id = f"gen_{uuid.uuid4().hex[:12]}"
        options = request.options or self.options
        started = time.perf_counter()
        self._stats["total"] += 1

        validation = self.validate_preferences(request.preferences)
        if not validation.valid:
            self._stats["failed"] += 1
            self.logger.warning(
                "[engine] Preferences rejected",
                extra={"request_id": request_id, "codes": [e.code for e in validation.errors]},
            )
            return GenerationResult(
                success=False,
                error=GenerationError(
                    code="VALIDATION_FAILED",
                    message="; ".join(e.message for e in validation.errors),
                    details={
                        "errors": [e.model_dump() for e in validation.errors],
                        "warnings": [w.model_dump() for w in validation.warnings],
                    },
                ),
                metadata=self._metadata(request_id, started, {}, ComponentUsageStats(), []),
            )

        cache_key = None
        if options.cache_enabled:
            cache_key = self.caching_service.generate_cache_key(request.preferences)
            cached = self.caching_service.get(cache_key)
            if cached is not None:
                self.logger.debug("[engine] Cache hit", extra={"request_id": request_id, "cache_key": cache_key})
                counts = cached.metadata.component_counts if cached.metadata else ComponentUsageStats()
                metadata = self._metadata(request_id, started, {}, counts, ["cache"], cache_hit=True)
                self._record(success=True, fallback=False, elapsed_ms=metadata.processing_time_ms)
                return cached.model_copy(update={"cache_key": cache_key, "metadata": metadata})
            self.logger.debug("[engine] Cache miss", extra={"request_id": request_id, "cache_key": cache_key})

        target = options.performance_target_ms / 1000
        deadline_at = started + target
        await self._refresh_exchange_rates(target * RATE_REFRESH_SHARE)

        timings: Dict[str, float] = {}
        counts = ComponentUsageStats()
        flags: List[str] = []
        try:
            itinerary = await self._run_with_deadline(
                request, options.max_content_items, options.enable_parallel_processing,
                options, timings, counts, flags, started + target * PRIMARY_SHARE,
            )
        except Exception as e:
            failed_stage = next(reversed(timings), None)
            self.logger.warning(
                "[engine] Generation pipeline failed",
                extra={"request_id": request_id, "stage": failed_stage, "error": str(e)},
            )
            if not options.fallback_strategies:
                return self._failure(request_id, started, e, failed_stage, timings, counts)
            return await self._fallback(request, options, request_id, started, deadline_at, e, failed_stage)

        metadata = self._metadata(request_id, started, timings, counts, flags)
        itinerary = self._stamp(itinerary, metadata)
        result = GenerationResult(success=True, itinerary=itinerary, metadata=metadata, cache_key=cache_key)
        if cache_key:
            self.caching_service.set(cache_key, result)
        self._record(success=True, fallback=False, elapsed_ms=metadata.processing_time_ms)
        self.logger.info(
            "[engine] Itinerary generated",
            extra={
                "request_id": request_id,
                "days": len(itinerary.days),
                "total": str(itinerary.total_estimated_cost.amount),
                "currency": itinerary.total_estimated_cost.currency,
                "ms": round(metadata.processing_time_ms, 1),
            },
        )
        return result

    def get_engine_status(self) -> EngineStatus:
        completed = self._stats["successful"] + self._stats["failed"]
        return EngineStatus(
            version=self.settings.ENGINE_VERSION,
            uptime_seconds=time.monotonic() - self._started_at,
            total_generations=self._stats["total"],
            successful_generations=self._stats["successful"],
            failed_generations=self._stats["failed"],
            fallback_generations=self._stats["fallback"],
            success_rate=self._stats["successful"] / completed if completed else 0.0,
            average_generation_time_ms=(
                sum(self._generation_times) / len(self._generation_times) if self._generation_times else 0.0
            ),
            cache=self.caching_service.get_stats(),
            services={
                "preference_matching": self.preference_service is not None,
                "destination_sequencing": self.sequencing_service is not None,
                "day_planning": self.day_planning_service is not None,
                "pricing_calculation": self.pricing_service is not None,
                "caching": self.caching_service is not None,
            },
            performance=self.performance_monitor.get_metrics(),
        )

    # --- failure handling ---

    async def _fallback(
        self,
        request: GenerationRequest,
        options: EngineOptions,
        request_id: str,
        started: float,
        deadline_at: float,
        error: Exception,
        failed_stage: Optional[str],
    ) -> GenerationResult:
        """One retry with a smaller content set and no fan-out, within what is left of the deadline."""
        timings: Dict[str, float] = {}
        counts = ComponentUsageStats()
        flags = ["fallback"]
        self.logger.warning(
            "[engine] Retrying with fallback strategy",
            extra={
                "request_id": request_id,
                "content_limit": options.fallback_content_limit,
                "timeout_s": round(deadline_at - time.perf_counter(), 3),
            },
        )
        try:
            itinerary = await self._run_with_deadline(
                request, options.fallback_content_limit, False,
                options, timings, counts, flags, deadline_at,
            )
        except Exception as fallback_error:
            self.logger.error(
                "[engine] Fallback generation failed",
                extra={"request_id": request_id, "error": str(fallback_error), "original_error": str(error)},
            )
            return self._failure(
                request_id, started, fallback_error, next(reversed(timings), None), timings, counts,
                original_error=error, original_stage=failed_stage,
            )

        metadata = self._metadata(request_id, started, timings, counts, flags)
        itinerary = self._stamp(itinerary, metadata)
        self._record(success=True, fallback=True, elapsed_ms=metadata.processing_time_ms)
        return GenerationResult(
            success=True,
            itinerary=itinerary,
            metadata=metadata,
            fallback_used=True,
            original_error=str(error),
        )

    def _failure(
        self,
        request_id: str,
        started: float,
        error: Exception,
        stage: Optional[str],
        timings: Dict[str, float],
        counts: ComponentUsageStats,
        original_error: Optional[Exception] = None,
        original_stage: Optional[str] = None,
    ) -> GenerationResult:
        details = {"cause": type(error).__name__, "stage": stage}
        if original_error is not None:
            details["original_cause"] = type(original_error).__name__
            details["original_stage"] = original_stage
            details["original_error"] = str(original_error)
        metadata = self._metadata(request_id, started, timings, counts, [])
        self._record(success=False, fallback=original_error is not None, elapsed_ms=metadata.processing_time_ms)
        self.logger.error(
            "[engine] Itinerary generation failed",
            extra={"request_id": request_id, "error": str(error), "stage": stage},
        )
        return GenerationResult(
            success=False,
            error=GenerationError(code="GENERATION_FAILED", message=str(error) or type(error).__name__, details=details),
            metadata=metadata,
            fallback_used=original_error is not None,
            original_error=str(original_error) if original_error is not None else None,
        )

    # --- pipeline ---

    async def _run_with_deadline(
        self,
        request: GenerationRequest,
        content_limit: int,
        parallel: bool,
        options: EngineOptions,
        timings: Dict[str, float],
        counts: ComponentUsageStats,
        flags: List[str],
        deadline_at: float,
    ) -> GeneratedItinerary:
        timeout = deadline_at - time.perf_counter()
        if timeout <= 0:
            raise GenerationTimeoutError("Generation deadline reached before the attempt started")
        try:
            return await asyncio.wait_for(
                self._run_pipeline(request, content_limit, parallel, options, timings, counts, flags),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise GenerationTimeoutError(f"Generation exceeded {int(timeout * 1000)} ms") from None

    async def _run_pipeline(
        self,
        request: GenerationRequest,
        content_limit: int,
        parallel: bool,
        options: EngineOptions,
        timings: Dict[str, float],
        counts: ComponentUsageStats,
        flags: List[str],
    ) -> GeneratedItinerary:
        preferences = request.preferences
        content = list(request.available_content)[:content_limit]
        counts.content_considered = len(content)
        monitor = self.performance_monitor

        # Step 1: score and filter content
        with monitor.track("content_matching", timings):
            matched = await self._match_content(preferences, content, options.match_score_threshold, parallel)
        counts.activities_matched = len(matched.activities)
        counts.accommodations_matched = len(matched.accommodations)
        counts.transportation_matched = len(matched.transportation)
        counts.destinations_matched = len(matched.destinations)
        if parallel:
            flags.append("parallel_matching")

        # Step 2: order destinations and allocate days
        with monitor.track("destination_sequencing", timings):
            sequence = await self._sequence_destinations(preferences, matched)
        counts.destinations_sequenced = len(sequence)

        # Step 3: plan every day
        trip_days = max(preferences.trip_duration_days(), 1)
        parallel_days = parallel and trip_days <= options.parallel_day_planning_max_days
        with monitor.track("day_planning", timings):
            days = await self._plan_days(preferences, sequence, matched, trip_days, parallel_days)
        counts.activities_scheduled = sum(len(d.activities) for d in days)
        if parallel_days:
            flags.append("parallel_day_planning")

        # Step 4: price, then trim toward the budget ceiling when over it
        with monitor.track("pricing", timings):
            itinerary = self._draft_itinerary(preferences, sequence, days, trip_days)
            breakdown = await self.pricing_service.calculate_itinerary_cost(itinerary)
            itinerary = itinerary.model_copy(update={
                "cost_breakdown": breakdown,
                "total_estimated_cost": breakdown.total,
                "days": [
                    day.model_copy(update={"total_estimated_cost": cost.total})
                    for day, cost in zip(itinerary.days, breakdown.by_day)
                ],
            })

        if preferences.budget_max is not None and itinerary.total_estimated_cost.amount > preferences.budget_max:
            with monitor.track("budget_optimization", timings):
                optimization = await self.pricing_service.optimize_for_budget(
                    itinerary,
                    Money(amount=preferences.budget_max, currency=preferences.currency),
                    alternative_activities=matched.activities,
                )
            itinerary = optimization.optimized_itinerary
            if optimization.changes_applied:
                flags.append("budget_optimization")

        # Step 5: summary and metadata
        with monitor.track("assembly", timings):
            itinerary = self._assemble(itinerary, trip_days, flags)
        return itinerary

    async def _match_content(
        self,
        preferences: UserPreferences,
        content: list,
        threshold: float,
        parallel: bool,
    ) -> MatchedContent:
        service = self.preference_service
        criteria = service.analyze_preferences(preferences)
        by_kind = {name: [c for c in content if isinstance(c, kind)] for name, kind in CONTENT_KINDS}

        if parallel:
            scored = await asyncio.gather(*(
                service.score_content(items, criteria, max_items=len(items)) for items in by_kind.values()
            ))
            score_lists = dict(zip(by_kind, scored))
        else:
            all_scores = await service.score_content(content, criteria, max_items=len(content))
            kind_of = {c.id: name for name, items in by_kind.items() for c in items}
            score_lists = {name: [s for s in all_scores if kind_of.get(s.content_id) == name] for name in by_kind}

        matched = {}
        for name, items in by_kind.items():
            lookup = {c.id: c for c in items}
            kept = service.filter_by_score(score_lists[name], threshold)
            matched[name] = [lookup[s.content_id] for s in kept if s.content_id in lookup]

        self.logger.debug(
            "[engine] Content matched",
            extra={name: f"{len(matched[name])}/{len(by_kind[name])}" for name in by_kind},
        )
        return MatchedContent(**matched)

    async def _sequence_destinations(
        self,
        preferences: UserPreferences,
        matched: MatchedContent,
    ) -> List[SequencedDestination]:
        destinations = list(matched.destinations)
        if not destinations:
            destinations = [self._destination_from_preferences(preferences, matched.activities)]
        # every destination needs at least one day
        destinations = destinations[:max(preferences.trip_duration_days(), 1)]

        constraints = SequencingConstraints(
            max_travel_time_per_day=self.settings.MAX_TRAVEL_TIME_PER_DAY,
            preferred_transportation=(
                [preferences.transportation_preference] if preferences.transportation_preference
                else list(FALLBACK_TRANSPORT)
            ),
            start_location=preferences.primary_destination,
            end_location=preferences.primary_destination,
            must_visit_order=preferences.must_visit_order,
        )
        return await self.sequencing_service.optimize_sequence(destinations, preferences, constraints)

    async def _plan_days(
        self,
        preferences: UserPreferences,
        sequence: List[SequencedDestination],
        matched: MatchedContent,
        trip_days: int,
        parallel: bool,
    ) -> List[ItineraryDay]:
        assignments = self._day_assignments(preferences, sequence, trip_days)
        day_preferences = self._day_preferences(preferences, trip_days)

        if parallel:
            days = await asyncio.gather(*(
                self._plan_single_day(n, day, stop, offset, sequence, matched, preferences, day_preferences)
                for n, (day, stop, offset) in enumerate(assignments, start=1)
            ))
            return list(days)

        planned = []
        for n, (day, stop, offset) in enumerate(assignments, start=1):
            planned.append(await self._plan_single_day(
                n, day, stop, offset, sequence, matched, preferences, day_preferences
            ))
        return planned

    @staticmethod
    def _day_assignments(
        preferences: UserPreferences,
        sequence: List[SequencedDestination],
        trip_days: int,
    ) -> List[Tuple[date, SequencedDestination, int]]:
        """(date, destination, day index within the stay) for each trip day, following the allocation."""
        start = preferences.start_date or date.today()
        assignments = []
        for i in range(trip_days):
            day = start + timedelta(days=i)
            stop = next(
                (d for d in sequence if d.arrival_date <= day <= d.departure_date),
                sequence[-1],
            )
            offset = (day - stop.arrival_date).days if day >= stop.arrival_date else 0
            assignments.append((day, stop, offset))
        return assignments

    def _day_preferences(self, preferences: UserPreferences, trip_days: int) -> DayPlanningPreferences:
        currency = preferences.currency
        meals = [
            MealPreference(
                type=meal_type,
                timing=timing,
                style=MealStyle.CASUAL,
                budget=self.converter.convert_money(Money(amount=usd, currency="USD"), currency).rounded(),
            )
            for meal_type, timing, usd in DEFAULT_MEAL_PLAN
        ]
        categories = {c.value for c in ActivityCategory}
        budget_for_day = None
        if preferences.budget_max is not None:
            budget_for_day = Money(amount=preferences.budget_max / trip_days, currency=currency).rounded()
        return DayPlanningPreferences(
            pacing=preferences.pace_preference,
            start_time=DAY_START,
            end_time=DAY_END,
            meal_preferences=meals,
            activity_types=[i.lower() for i in preferences.interests if i.lower() in categories],
            budget_for_day=budget_for_day,
            accessibility=preferences.mobility_requirements,
        )

    async def _plan_single_day(
        self,
        day_number: int,
        day: date,
        stop: SequencedDestination,
        offset: int,
        sequence: List[SequencedDestination],
        matched: MatchedContent,
        preferences: UserPreferences,
        day_preferences: DayPlanningPreferences,
    ) -> ItineraryDay:
        location = stop.location.lower()
        local = [a for a in matched.activities if location in a.location.lower()]
        # spread the stay's activities across its days so none repeats
        candidates = local[offset::stop.days_allocated] if stop.days_allocated > 0 else local

        plan = await self.day_planning_service.plan_day(stop, day, candidates, day_preferences)
        plan = await self.day_planning_service.optimize_day_schedule(plan)

        accommodation = next((a for a in matched.accommodations if location in a.location.lower()), None)

        transportation: List[Transportation] = []
        notes = plan.notes or (f"Exploring {stop.title}" if plan.activities else f"Free day in {stop.title}")
        if offset == 0 and stop.sequence_order > 1:
            previous = sequence[stop.sequence_order - 2]
            leg = next(
                (
                    t for t in matched.transportation
                    if previous.location.lower() in t.from_location.lower()
                    and location in t.to_location.lower()
                ),
                None,
            )
            if leg is not None:
                transportation.append(leg)
            notes = f"Travel from {previous.title} ({stop.travel_time_from_previous} min). {notes}"

        meals = [m.model_copy(update={"dietary_options": list(preferences.dietary_restrictions)}) for m in plan.meals]
        return ItineraryDay(
            id=f"day_{day_number}",
            day_number=day_number,
            date=day,
            title=f"Day {day_number}: {stop.title}",
            destination_id=stop.id,
            location=stop.location,
            coordinates=stop.coordinates,
            accommodation=accommodation,
            activities=plan.activities,
            transportation=transportation,
            meals=meals,
            free_time=plan.free_time,
            total_estimated_cost=plan.total_cost,
            pacing=plan.pacing,
            notes=notes,
        )

    @staticmethod
    def _destination_from_preferences(preferences: UserPreferences, activities: List[Activity]) -> Destination:
        """Stand-in destination when no destination content matched."""
        name = preferences.primary_destination.strip()
        local = [a for a in activities if name.lower() in a.location.lower()] or activities
        latitude, longitude = centroid(a.coordinates for a in local) if local else (0.0, 0.0)
        slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "primary"
        return Destination(
            id=f"dest_{slug}",
            title=name,
            description=f"Trip base in {name}",
            location=name,
            coordinates=Coordinates(latitude=latitude, longitude=longitude),
            country_code=extract_country_code(name),
            local_currency=preferences.currency,
        )

    # --- assembly ---

    def _draft_itinerary(
        self,
        preferences: UserPreferences,
        sequence: List[SequencedDestination],
        days: List[ItineraryDay],
        trip_days: int,
    ) -> GeneratedItinerary:
        names = [d.title for d in sequence]
        return GeneratedItinerary(
            id=f"itin_{uuid.uuid4().hex[:12]}",
            title=f"{trip_days}-Day {' & '.join(names[:2])} Adventure",
            description=(
                f"A {trip_days}-day travel itinerary exploring {', '.join(names)}, "
                f"customized for your interests and preferences."
            ),
            destinations=sequence,
            days=days,
            total_duration=trip_days,
            total_estimated_cost=Money.zero(preferences.currency),
            preferences=preferences,
        )

    def _assemble(self, itinerary: GeneratedItinerary, trip_days: int, flags: List[str]) -> GeneratedItinerary:
        breakdown = itinerary.cost_breakdown
        total = itinerary.total_estimated_cost
        summary = ItinerarySummary(
            highlights=highlights(itinerary.days),
            total_activities=sum(len(d.activities) for d in itinerary.days),
            unique_destinations=len({d.id for d in itinerary.destinations}),
            avg_daily_cost=total.scaled(Decimal(1) / Decimal(trip_days)).rounded(),
            recommended_budget=(total + breakdown.contingency).rounded() if breakdown else total,
            physical_demand=physical_demand(itinerary.days),
            cultural_immersion=cultural_immersion(itinerary.days),
        )
        return itinerary.model_copy(update={
            "summary": summary,
            "metadata": ItineraryMetadata(
                engine_version=self.settings.ENGINE_VERSION,
                confidence_score=breakdown.confidence if breakdown else 0.5,
                optimization_flags=list(flags),
            ),
        })

    def _stamp(self, itinerary: GeneratedItinerary, metadata: GenerationMetadata) -> GeneratedItinerary:
        stamped = itinerary.metadata.model_copy(update={
            "generation_time_ms": metadata.processing_time_ms,
            "optimization_flags": list(metadata.optimization_applied),
        })
        return itinerary.model_copy(update={"metadata": stamped, "generated_at": datetime.utcnow()})

    # --- bookkeeping ---

    def _metadata(
        self,
        request_id: str,
        started: float,
        timings: Dict[str, float],
        counts: ComponentUsageStats,
        flags: List[str],
        cache_hit: bool = False,
    ) -> GenerationMetadata:
        return GenerationMetadata(
            request_id=request_id,
            processing_time_ms=(time.perf_counter() - started) * 1000,
            stage_timings_ms=dict(timings),
            component_counts=counts,
            optimization_applied=list(flags),
            cache_hit=cache_hit,
            engine_version=self.settings.ENGINE_VERSION,
        )

    def _record(self, success: bool, fallback: bool, elapsed_ms: float) -> None:
        self._stats["successful" if success else "failed"] += 1
        if fallback:
            self._stats["fallback"] += 1
        self._generation_times.append(elapsed_ms)

    async def _refresh_exchange_rates(self, limit: float) -> None:
        if not self.converter.needs_refresh():
            return
        try:
            await asyncio.wait_for(
                self.converter.refresh_rates(), timeout=min(self.settings.PROVIDER_TIMEOUT_SECONDS, limit)
            )
        except asyncio.TimeoutError:
            self.logger.warning("[engine] Exchange-rate refresh timed out, using last known rates")


def build_default_engine(settings: Optional[Settings] = None) -> ItineraryGenerationEngine:
    """Wire an engine from settings; each call builds fresh services."""
    settings = settings or get_settings()
    converter = CurrencyConverter(
        refresh_interval_minutes=settings.EXCHANGE_RATE_REFRESH_MINUTES,
        api_url=settings.EXCHANGE_RATE_API_URL,
    )
    return ItineraryGenerationEngine(
        preference_service=PreferenceMatchingService(max_content_items=settings.MAX_CONTENT_ITEMS),
        sequencing_service=DestinationSequencingService(
            clustering_radius_km=settings.CLUSTERING_RADIUS_KM,
            mutation_rate=settings.GA_MUTATION_RATE,
            rng=random.Random(settings.GA_SEED),
        ),
        day_planning_service=DayPlanningService(converter=converter),
        pricing_service=PricingCalculationService(
            converter=converter,
            base_currency=settings.BASE_CURRENCY,
            cache_ttl_minutes=settings.PRICING_CACHE_TTL_MINUTES,
            contingency_percentage=settings.CONTINGENCY_PERCENTAGE,
            provider_timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
        ),
        caching_service=CachingService(
            max_size=settings.CACHE_MAX_SIZE,
            default_ttl_seconds=settings.CACHE_TTL_SECONDS,
        ),
        options=EngineOptions.from_settings(settings),
        performance_monitor=PerformanceMonitor(),
        converter=converter,
        settings=settings,
    )
