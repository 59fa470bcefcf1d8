from datetime import date
from typing import Optional, Protocol, runtime_checkable

from itinerary_engine.models.component_models import Money


@runtime_checkable
class Validatable(Protocol):
    def validate_invariants(self) -> None: ...


@runtime_checkable
class Priced(Protocol):
    """Anything the pricing service can estimate."""
    id: str
    estimated_cost: Optional[Money]

    def pricing_key(self) -> str: ...

    def pricing_location(self) -> str: ...


@runtime_checkable
class Scheduled(Protocol):
    def estimated_duration(self) -> int: ...

    def is_available(self, start: date, end: Optional[date] = None) -> bool: ...
