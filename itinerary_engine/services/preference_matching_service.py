import asyncio
import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from itinerary_engine.components.accommodation import Accommodation
from itinerary_engine.components.activity import Activity
from itinerary_engine.components.transportation import Transportation
from itinerary_engine.models.component_models import Difficulty
from itinerary_engine.models.planning_models import (
    BudgetConstraint, ContentMatchScore, DestinationConstraint, MatchingCriteria
)
from itinerary_engine.models.request_models import PacePreference, UserPreferences

DEFAULT_WEIGHTS: Dict[str, float] = {
    "interests": 35,
    "budget": 25,
    "location": 20,
    "timing": 10,
    "difficulty": 5,
    "accessibility": 5,
}

# Criteria scored for each component kind; everything else is scored on these three
ACTIVITY_CRITERIA = ("interests", "budget", "location", "timing", "difficulty", "accessibility")
GENERIC_CRITERIA = ("budget", "location", "accessibility")

BATCH_SIZE = 100
MAX_REASONS = 5

STAR_PATTERN = re.compile(r"^\s*(\d)\s*-?\s*star", re.IGNORECASE)

ScoringResult = Tuple[float, List[str]]


class PreferenceMatchingService:
    """Scores and ranks content against a traveler's preferences."""

    def __init__(self, weights: Optional[Dict[str, float]] = None, max_content_items: int = 10000):
        merged = dict(DEFAULT_WEIGHTS)
        merged.update(weights or {})
        total = sum(merged.values())
        if abs(total - 100) > 1e-6:
            raise ValueError(f"Preference weights must sum to 100, got {total}")
        self.weights = merged
        self.max_content_items = max_content_items
        self.logger = logging.getLogger(__name__)

    def analyze_preferences(self, preferences: UserPreferences) -> MatchingCriteria:
        destinations = []
        if preferences.primary_destination:
            destinations.append(DestinationConstraint(location=preferences.primary_destination, is_primary=True))
        destinations.extend(
            DestinationConstraint(location=d) for d in preferences.additional_destinations
        )
        time_window = None
        if preferences.start_date and preferences.end_date:
            time_window = {"start": preferences.start_date, "end": preferences.end_date}
        budget = None
        if preferences.budget_min is not None or preferences.budget_max is not None:
            budget = BudgetConstraint(
                minimum=preferences.budget_min,
                maximum=preferences.budget_max,
                currency=preferences.currency,
            )
        return MatchingCriteria(
            preferences=preferences,
            weights=dict(self.weights),
            destination_constraints=destinations,
            time_window=time_window,
            budget_constraint=budget,
            derived_pace=self._derive_pace(preferences),
        )

    async def score_content(
        self,
        items: Iterable,
        criteria: MatchingCriteria,
        max_items: Optional[int] = None,
    ) -> List[ContentMatchScore]:
        all_items = list(items)
        limited = all_items[: max_items or self.max_content_items]
        scores: List[ContentMatchScore] = []
        for start in range(0, len(limited), BATCH_SIZE):
            scores.extend(self.score_item(item, criteria) for item in limited[start:start + BATCH_SIZE])
            # let other scoring tasks run between batches
            await asyncio.sleep(0)

        self.logger.debug(
            "[matching] Scored content",
            extra={"items": len(limited), "capped": len(limited) < len(all_items)},
        )
        return sort_scores(scores)

    def filter_by_score(self, scores: List[ContentMatchScore], threshold: float) -> List[ContentMatchScore]:
        return [s for s in scores if s.score >= threshold]

    def score_item(self, item, criteria: MatchingCriteria) -> ContentMatchScore:
        """Weighted score of one component, renormalised over the criteria that apply to its kind."""
        prefs = criteria.preferences
        applicable = ACTIVITY_CRITERIA if isinstance(item, Activity) else GENERIC_CRITERIA

        scorers = {
            "interests": lambda: self._score_interests(item, prefs),
            "budget": lambda: self._score_budget(item, prefs),
            "location": lambda: self._score_location(item, prefs),
            "timing": lambda: self._score_timing(item, criteria.derived_pace),
            "difficulty": lambda: self._score_difficulty(item, prefs),
            "accessibility": lambda: self._score_accessibility(item, prefs),
        }

        weighted = 0.0
        weight_total = 0.0
        reasons: List[str] = []
        for name in applicable:
            weight = criteria.weights.get(name, 0)
            score, why = scorers[name]()
            weighted += score * weight
            weight_total += weight
            reasons.extend(why)

        total = weighted / weight_total if weight_total else 0.0
        total += self._category_modifier(item, prefs)
        total = max(0.0, min(1.0, total))

        unique_reasons = list(dict.fromkeys(reasons))[:MAX_REASONS]
        return ContentMatchScore(
            content_id=item.id,
            score=total,
            reasons=unique_reasons,
            category=item.component_type(),
            created_at=item.created_at,
        )

    # --- sub-scores ---

    def _score_interests(self, activity: Activity, prefs: UserPreferences) -> ScoringResult:
        if not prefs.interests:
            return 0.5, ["No specific interests specified"]

        reasons: List[str] = []
        score = 0.0
        matches = 0
        interests = [i.lower() for i in prefs.interests]

        if activity.category.value in interests:
            score += 0.8
            matches += 1
            reasons.append(f"Matches {activity.category.value} interest")

        for interest in interests:
            for tag in activity.tags:
                tag_lower = tag.lower()
                if interest in tag_lower or tag_lower in interest:
                    score += 0.3
                    matches += 1
                    reasons.append(f'Tag "{tag}" matches interest "{interest}"')

        text = f"{activity.title} {activity.description}".lower()
        for interest in interests:
            if interest in text:
                score += 0.2
                matches += 1
                reasons.append(f'Description contains "{interest}"')

        if matches == 0:
            return 0.0, ["No interest matches found"]
        return min(1.0, score / len(interests)), reasons

    def _score_budget(self, item, prefs: UserPreferences) -> ScoringResult:
        if not item.estimated_cost:
            return 0.7, ["No cost information available"]

        cost = float(item.estimated_cost.amount)
        budget_min = float(prefs.budget_min or 0)
        budget_max = float(prefs.budget_max) if prefs.budget_max is not None else None

        if cost <= budget_min:
            return 1.0, ["Well within budget"]
        if budget_max is None or cost <= budget_max:
            if budget_max is None or budget_max <= budget_min:
                return 1.0, ["Within budget range"]
            position = (cost - budget_min) / (budget_max - budget_min)
            return 1 - position * 0.5, ["Within budget range"]
        if budget_max <= 0:
            return 0.0, ["Over budget"]
        ratio = cost / budget_max
        return max(0.0, 0.3 - (ratio - 1) * 0.5), ["Over budget"]

    def _score_location(self, item, prefs: UserPreferences) -> ScoringResult:
        reasons: List[str] = []
        score = 0.5
        locations = [loc.lower() for loc in self._locations(item) if loc]

        def matches(place: str) -> bool:
            place = place.lower()
            return any(place in loc or loc in place for loc in locations)

        if prefs.primary_destination and matches(prefs.primary_destination):
            score += 0.4
            reasons.append("Located in primary destination")

        for dest in prefs.additional_destinations:
            if matches(dest):
                score += 0.2
                reasons.append(f"Located in {dest}")

        return min(1.0, score), reasons

    def _score_timing(self, activity: Activity, pace: str) -> ScoringResult:
        duration = activity.estimated_duration()
        if pace == "slow" and duration > 180:
            return 0.8, ["Long duration fits relaxed pace"]
        if pace == "moderate" and 60 <= duration <= 180:
            return 0.8, ["Moderate duration fits balanced pace"]
        if pace == "fast" and duration < 120:
            return 0.8, ["Short duration fits active pace"]
        return 0.5, []

    def _score_difficulty(self, activity: Activity, prefs: UserPreferences) -> ScoringResult:
        preferred = Difficulty.EASY if (prefs.children > 0 or prefs.infants > 0) else Difficulty.MODERATE
        if activity.difficulty == preferred:
            return 0.9, [f"{activity.difficulty.value} difficulty matches group composition"]
        if activity.difficulty == Difficulty.EASY:
            return 0.7, ["Easy activity suitable for most travelers"]
        return 0.5, []

    def _score_accessibility(self, item, prefs: UserPreferences) -> ScoringResult:
        if isinstance(item, Activity):
            accessible = item.accessibility.wheelchair_accessible
        elif isinstance(item, Accommodation):
            accessible = item.is_accessible()
        else:
            return 0.5, []

        if prefs.mobility_requirements:
            if accessible:
                return 0.9, ["Wheelchair accessible"]
            return 0.2, ["Not wheelchair accessible"]
        if accessible:
            return 0.6, ["Wheelchair accessible option"]
        return 0.5, []

    def _category_modifier(self, item, prefs: UserPreferences) -> float:
        if isinstance(item, Accommodation) and prefs.accommodation_type:
            wanted = prefs.accommodation_type.lower()
            if wanted == "any" or wanted == item.type.value:
                return 0.1
            star = STAR_PATTERN.match(wanted)
            if star:
                return 0.1 if item.star_rating == int(star.group(1)) else -0.1
            return -0.1
        if isinstance(item, Transportation) and prefs.transportation_preference:
            wanted = prefs.transportation_preference.lower()
            return 0.1 if wanted in ("any", item.type.value) else -0.1
        return 0.0

    # --- helpers ---

    @staticmethod
    def _locations(item) -> List[str]:
        if isinstance(item, Transportation):
            return [item.from_location, item.to_location]
        return [getattr(item, "location", "")]

    @staticmethod
    def _derive_pace(prefs: UserPreferences) -> str:
        interests = [i.lower() for i in prefs.interests]
        if prefs.infants > 0 or prefs.children > 2:
            return "slow"
        if "adventure" in interests or "sports" in interests:
            return "fast"
        if "relaxation" in interests or "cultural" in interests:
            return "slow"
        if prefs.pace_preference == PacePreference.RELAXED:
            return "slow"
        if prefs.pace_preference == PacePreference.PACKED:
            return "fast"
        return "moderate"


def sort_scores(scores: List[ContentMatchScore]) -> List[ContentMatchScore]:
    """Highest score first; equal scores favour newer content."""
    return sorted(
        scores,
        key=lambda s: (-s.score, -(s.created_at.timestamp() if s.created_at else 0)),
    )
