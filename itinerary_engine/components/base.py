import uuid
from datetime import datetime, timezone
from typing import Callable, ClassVar, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from itinerary_engine.models.component_models import Money
from itinerary_engine.components.validation import COMMON_CHECKS, run_checks


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ComponentFields(BaseModel):
    """Fields shared by every content component.

    Instances are frozen. `with_updates` and `clone` build new values and run
    the type's full validation pipeline again.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    validation_pipeline: ClassVar[Tuple[Callable, ...]] = COMMON_CHECKS
    type_tag: ClassVar[str] = "component"

    id: str
    title: str
    description: str
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    estimated_cost: Optional[Money] = None
    booking_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _validate_pipeline(self):
        self.validate_invariants()
        return self

    def validate_invariants(self) -> None:
        run_checks(self, self.validation_pipeline)

    def component_type(self) -> str:
        return self.type_tag

    def with_updates(self, **changes):
        """Return a new, re-validated value with `changes` applied and a fresh updated_at."""
        data = self.model_dump()
        data.update(changes)
        data["updated_at"] = utc_now()
        return type(self).model_validate(data)

    def clone(self, **overrides):
        """Independent copy with a new id suffix and timestamps."""
        now = utc_now()
        data = self.model_dump()
        data.update(overrides)
        data["id"] = overrides.get("id") or f"{self.id}_clone_{uuid.uuid4().hex[:8]}"
        data["created_at"] = now
        data["updated_at"] = now
        return type(self).model_validate(data)

    def priority(self) -> int:
        return 1

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def matches(self, term: str) -> bool:
        term = term.lower()
        return (
            term in self.title.lower()
            or term in self.description.lower()
            or any(term in t.lower() for t in self.tags)
        )


def sort_by_priority(components: list, search_term: Optional[str] = None) -> list:
    """Priority first, then search relevance, then newest."""
    def key(c):
        relevance = 1 if (search_term and c.matches(search_term)) else 0
        return (-c.priority(), -relevance, -c.created_at.timestamp())
    return sorted(components, key=key)
