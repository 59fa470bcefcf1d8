from typing import Optional


class ItineraryEngineError(Exception):
    """Base class for errors raised inside the itinerary engine"""


class ComponentValidationError(ItineraryEngineError):
    """A content component violated one of its invariants.

    Not a ValueError subclass: pydantic passes it through model validators
    unchanged instead of wrapping it.
    """

    def __init__(self, message: str, field: Optional[str] = None, component_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.component_id = component_id

    def __str__(self) -> str:
        if self.field:
            return f"{self.field}: {self.message}"
        return self.message


class UnrecognizedComponentError(ItineraryEngineError):
    """Raw content whose shape matches no known component type"""


class CurrencyMismatchError(ItineraryEngineError):
    """Arithmetic attempted across different currencies without conversion"""


class UnsupportedCurrencyError(ItineraryEngineError):
    """No exchange rate is known for a currency"""


class DayPlanningError(ItineraryEngineError):
    """A single day could not be planned"""


class GenerationTimeoutError(ItineraryEngineError):
    """The generation pipeline exceeded its wall-clock budget"""
