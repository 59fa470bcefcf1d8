"""
Destination ordering: geographic clustering, nearest-neighbour routing between
clusters and a small genetic algorithm inside large clusters. Also allocates
days and dates and computes the travel legs between consecutive stops.
"""
import logging
import random
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from itinerary_engine.components.destination import Destination
from itinerary_engine.models.component_models import Coordinates, Money
from itinerary_engine.models.planning_models import (
    DestinationCluster, SequenceIssue, SequenceValidation, SequencedDestination,
    SequencingConstraints, Severity, TravelTimeResult
)
from itinerary_engine.models.request_models import UserPreferences
from itinerary_engine.utils.geo import centroid, distance_between, haversine_km, travel_cost, travel_minutes

# Above this many destinations a cluster is ordered by the genetic optimizer
NEAREST_NEIGHBOUR_LIMIT = 5
MAX_SEQUENCE_DAYS = 30
MUST_VISIT_BONUS = 50


class RouteGeneticOptimizer:
    """Genetic search over visiting orders of one cluster.

    The top fifth of every generation is carried over unchanged, so the best
    fitness recorded in `best_fitness_history` never decreases.
    """

    def __init__(
        self,
        rng: random.Random,
        max_travel_time_per_day: int = 480,
        mode: str = "car",
        must_visit_order: Optional[List[str]] = None,
        mutation_rate: float = 0.1,
        tournament_size: int = 3,
    ):
        self.rng = rng
        self.max_travel_time_per_day = max_travel_time_per_day
        self.mode = mode
        self.must_visit_order = must_visit_order or []
        self.mutation_rate = mutation_rate
        self.tournament_size = tournament_size
        self.best_fitness_history: List[float] = []

    def fitness(self, route: Sequence[Destination]) -> float:
        score = 1000.0
        total_distance = 0.0
        total_time = 0
        for prev, cur in zip(route, route[1:]):
            km = distance_between(prev.coordinates, cur.coordinates)
            minutes = travel_minutes(km, self.mode)
            total_distance += km
            total_time += minutes
            if minutes > self.max_travel_time_per_day:
                score -= (minutes - self.max_travel_time_per_day) * 2

        score -= total_distance * 0.1
        score -= total_time * 0.5

        if self.must_visit_order:
            positions = {d.id: i for i, d in enumerate(route)}
            for first, second in zip(self.must_visit_order, self.must_visit_order[1:]):
                if first in positions and second in positions and positions[first] < positions[second]:
                    score += MUST_VISIT_BONUS

        return max(0.0, score)

    def optimize(self, destinations: Sequence[Destination]) -> List[Destination]:
        n = len(destinations)
        if n < 2:
            return list(destinations)

        population_size = min(50, n * 4)
        generations = min(100, n * 2)
        elite_size = max(1, int(population_size * 0.2))

        population = [list(destinations)]
        while len(population) < population_size:
            individual = list(destinations)
            self.rng.shuffle(individual)
            population.append(individual)

        self.best_fitness_history = []
        for _ in range(generations):
            ranked = sorted(((self.fitness(ind), ind) for ind in population), key=lambda p: p[0], reverse=True)
            self.best_fitness_history.append(ranked[0][0])

            next_population = [ind for _, ind in ranked[:elite_size]]
            while len(next_population) < population_size:
                parent1 = self._tournament(ranked)
                parent2 = self._tournament(ranked)
                child = self._order_crossover(parent1, parent2)
                if self.rng.random() < self.mutation_rate:
                    self._swap_mutation(child)
                next_population.append(child)
            population = next_population

        return max(population, key=self.fitness)

    def _tournament(self, ranked: List[Tuple[float, List[Destination]]]) -> List[Destination]:
        contenders = [ranked[self.rng.randrange(len(ranked))] for _ in range(self.tournament_size)]
        return max(contenders, key=lambda p: p[0])[1]

    def _order_crossover(self, parent1: List[Destination], parent2: List[Destination]) -> List[Destination]:
        length = len(parent1)
        start = self.rng.randrange(length)
        end = self.rng.randrange(start, length)

        child: List[Optional[Destination]] = [None] * length
        child[start:end + 1] = parent1[start:end + 1]
        taken = {d.id for d in parent1[start:end + 1]}
        filler = (d for d in parent2 if d.id not in taken)
        for i in range(length):
            if child[i] is None:
                child[i] = next(filler)
        return child

    def _swap_mutation(self, individual: List[Destination]) -> None:
        i = self.rng.randrange(len(individual))
        j = self.rng.randrange(len(individual))
        individual[i], individual[j] = individual[j], individual[i]


class DestinationSequencingService:
    def __init__(
        self,
        clustering_radius_km: float = 100.0,
        mutation_rate: float = 0.1,
        rng: Optional[random.Random] = None,
    ):
        self.clustering_radius_km = clustering_radius_km
        self.mutation_rate = mutation_rate
        self.rng = rng or random.Random()
        self.logger = logging.getLogger(__name__)
        self._travel_cache: Dict[Tuple[str, str, str], TravelTimeResult] = {}
        self.last_optimizer: Optional[RouteGeneticOptimizer] = None

    async def optimize_sequence(
        self,
        destinations: List[Destination],
        preferences: UserPreferences,
        constraints: Optional[SequencingConstraints] = None,
    ) -> List[SequencedDestination]:
        constraints = constraints or SequencingConstraints()
        if not destinations:
            return []

        # Step 1: group nearby destinations
        clusters = self.cluster_destinations(destinations)

        # Step 2: order clusters, then destinations inside each cluster
        ordered: List[Destination] = []
        for cluster in self._order_clusters(clusters, constraints.start_location):
            ordered.extend(self._order_within_cluster(cluster.destinations, constraints))

        # Step 3: days, dates and travel legs
        mode = constraints.preferred_transportation[0] if constraints.preferred_transportation else "car"
        sequence = self._allocate_days(ordered, preferences, mode)

        # Step 4: validate; blocking problems are reported but not repaired
        validation = self.validate_sequence(sequence, constraints.max_travel_time_per_day)
        if not validation.valid:
            self.logger.warning(
                "[sequencing] Sequence has blocking issues",
                extra={"errors": [i.message for i in validation.errors]},
            )
        self.logger.info(
            "[sequencing] Sequence ready",
            extra={
                "destinations": len(sequence),
                "clusters": len(clusters),
                "total_distance_km": round(validation.total_distance, 1),
            },
        )
        return sequence

    def cluster_destinations(self, destinations: List[Destination]) -> List[DestinationCluster]:
        """Greedy grouping: each unassigned destination seeds a cluster of everything within the radius."""
        clusters: List[DestinationCluster] = []
        remaining = list(destinations)
        while remaining:
            seed = remaining[0]
            members = [
                d for d in remaining
                if distance_between(seed.coordinates, d.coordinates) <= self.clustering_radius_km
            ]
            remaining = [d for d in remaining if d not in members]

            lat, lng = centroid(d.coordinates for d in members)
            radius = max(haversine_km(lat, lng, d.coordinates.latitude, d.coordinates.longitude) for d in members)
            clusters.append(DestinationCluster(
                id=f"cluster_{len(clusters)}",
                destinations=members,
                centroid=Coordinates(latitude=lat, longitude=lng),
                radius_km=radius,
            ))
        return clusters

    def calculate_travel_time(self, origin: Destination, target: Destination, mode: str = "car") -> TravelTimeResult:
        key = (origin.id, target.id, mode)
        cached = self._travel_cache.get(key)
        if cached is not None:
            return cached

        km = distance_between(origin.coordinates, target.coordinates)
        result = TravelTimeResult(
            duration=travel_minutes(km, mode),
            distance=km,
            transportation_options=[],
            cost=Money(amount=Decimal(str(travel_cost(km, mode))), currency=origin.local_currency),
        )
        self._travel_cache[key] = result
        return result

    def validate_sequence(
        self,
        sequence: List[SequencedDestination],
        max_travel_time_per_day: Optional[int] = None,
    ) -> SequenceValidation:
        cap = max_travel_time_per_day if max_travel_time_per_day is not None else SequencingConstraints().max_travel_time_per_day
        issues: List[SequenceIssue] = []
        total_time = 0
        total_distance = 0.0

        for i, dest in enumerate(sequence):
            if dest.arrival_date > dest.departure_date:
                issues.append(SequenceIssue(
                    type="timing",
                    severity=Severity.ERROR,
                    message=f"Arrival after departure at {dest.title}",
                    affected_destinations=[dest.id],
                ))
            if dest.days_allocated < 1:
                issues.append(SequenceIssue(
                    type="timing",
                    severity=Severity.ERROR,
                    message=f"No days allocated to {dest.title}",
                    affected_destinations=[dest.id],
                ))
            if i == 0:
                continue

            prev = sequence[i - 1]
            total_time += dest.travel_time_from_previous
            total_distance += dest.distance_from_previous_km

            gap_minutes = (dest.arrival_date - prev.departure_date).days * 24 * 60
            if gap_minutes < dest.travel_time_from_previous:
                issues.append(SequenceIssue(
                    type="logistics",
                    severity=Severity.ERROR,
                    message=f"Not enough time to travel from {prev.title} to {dest.title}",
                    affected_destinations=[prev.id, dest.id],
                ))
            if dest.travel_time_from_previous > cap:
                issues.append(SequenceIssue(
                    type="travel_time",
                    severity=Severity.WARNING,
                    message=(
                        f"Travel from {prev.title} to {dest.title} takes "
                        f"{dest.travel_time_from_previous} minutes, over the {cap} minute daily limit"
                    ),
                    affected_destinations=[prev.id, dest.id],
                ))

        total_days = sum(d.days_allocated for d in sequence)
        if total_days > MAX_SEQUENCE_DAYS:
            issues.append(SequenceIssue(
                type="timing",
                severity=Severity.WARNING,
                message=f"Trip spans {total_days} days, longer than {MAX_SEQUENCE_DAYS}",
                affected_destinations=[d.id for d in sequence],
            ))

        return SequenceValidation(
            valid=not any(i.severity == Severity.ERROR for i in issues),
            issues=issues,
            total_travel_time=total_time,
            total_distance=total_distance,
        )

    # --- ordering ---

    def _order_clusters(self, clusters: List[DestinationCluster], start_location: Optional[str]) -> List[DestinationCluster]:
        if len(clusters) <= 1:
            return clusters
        start = 0
        if start_location:
            needle = start_location.lower()
            for i, cluster in enumerate(clusters):
                if any(needle in d.location.lower() for d in cluster.destinations):
                    start = i
                    break

        remaining = list(clusters)
        current = remaining.pop(start)
        ordered = [current]
        while remaining:
            current = min(remaining, key=lambda c: distance_between(current.centroid, c.centroid))
            remaining.remove(current)
            ordered.append(current)
        return ordered

    def _order_within_cluster(self, destinations: List[Destination], constraints: SequencingConstraints) -> List[Destination]:
        if len(destinations) <= NEAREST_NEIGHBOUR_LIMIT:
            return self._nearest_neighbour(destinations, constraints.start_location)

        optimizer = RouteGeneticOptimizer(
            rng=self.rng,
            max_travel_time_per_day=constraints.max_travel_time_per_day,
            mode=constraints.preferred_transportation[0] if constraints.preferred_transportation else "car",
            must_visit_order=constraints.must_visit_order,
            mutation_rate=self.mutation_rate,
        )
        route = optimizer.optimize(destinations)
        self.last_optimizer = optimizer
        self.logger.debug(
            "[sequencing] Genetic ordering done",
            extra={"destinations": len(destinations), "best_fitness": optimizer.best_fitness_history[-1]},
        )
        return route

    @staticmethod
    def _nearest_neighbour(destinations: List[Destination], start_location: Optional[str]) -> List[Destination]:
        if len(destinations) <= 1:
            return list(destinations)
        start = 0
        if start_location:
            needle = start_location.lower()
            for i, d in enumerate(destinations):
                if needle in d.location.lower():
                    start = i
                    break

        remaining = list(destinations)
        current = remaining.pop(start)
        route = [current]
        while remaining:
            current = min(remaining, key=lambda d: distance_between(current.coordinates, d.coordinates))
            remaining.remove(current)
            route.append(current)
        return route

    # --- day allocation ---

    def _allocate_days(self, ordered: List[Destination], preferences: UserPreferences, mode: str) -> List[SequencedDestination]:
        total_days = max(preferences.trip_duration_days(), 1)
        base, extra = divmod(total_days, len(ordered))
        cursor = preferences.start_date or date.today()

        sequence: List[SequencedDestination] = []
        for i, dest in enumerate(ordered):
            days = base + (1 if i < extra else 0)
            arrival = cursor
            departure = cursor + timedelta(days=days - 1)

            travel = None
            if i > 0:
                travel = self.calculate_travel_time(ordered[i - 1], dest, mode)

            sequence.append(SequencedDestination(
                **dest.model_dump(),
                sequence_order=i + 1,
                arrival_date=arrival,
                departure_date=departure,
                days_allocated=days,
                travel_time_from_previous=travel.duration if travel else 0,
                distance_from_previous_km=travel.distance if travel else 0.0,
                travel_cost_from_previous=travel.cost if travel else None,
            ))
            cursor = departure + timedelta(days=1)
        return sequence
