import logging
from typing import Any, Dict, Iterable, List, Optional, Type, Union

from pydantic import ValidationError

from itinerary_engine.components.activity import Activity
from itinerary_engine.components.accommodation import Accommodation
from itinerary_engine.components.transportation import Transportation
from itinerary_engine.components.destination import Destination
from itinerary_engine.utils.errors import ComponentValidationError, UnrecognizedComponentError

Component = Union[Activity, Accommodation, Transportation, Destination]

logger = logging.getLogger(__name__)


def _has(data: Dict[str, Any], *keys: str) -> bool:
    return all(data.get(k) is not None for k in keys)


class ComponentFactory:
    """Builds content components from loosely-typed dictionaries.

    The component type is picked from the discriminating keys present in the
    data, so callers never need to say what they are passing in.
    """

    @staticmethod
    def detect_type(data: Dict[str, Any]) -> Optional[Type]:
        if _has(data, "category", "time_slot"):
            return Activity
        if _has(data, "room_types", "check_in_time"):
            return Accommodation
        if (_has(data, "from", "to") or _has(data, "from_location", "to_location")) and _has(data, "departure_time"):
            return Transportation
        if _has(data, "country_code", "coordinates"):
            return Destination
        return None

    @classmethod
    def create_component(cls, data: Dict[str, Any]) -> Component:
        component_cls = cls.detect_type(data)
        if component_cls is None:
            raise UnrecognizedComponentError(
                f"Unrecognized component shape (keys: {sorted(data.keys())})"
            )
        try:
            return component_cls.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or None
            raise ComponentValidationError(first.get("msg", str(e)), field=field, component_id=data.get("id")) from e

    @classmethod
    def validate_component_data(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate without raising; mirrors the dict shape of the request validators."""
        component_cls = cls.detect_type(data)
        if component_cls is None:
            return {"valid": False, "errors": ["Unrecognized component shape"], "component_type": None}
        errors: List[str] = []
        try:
            component_cls.model_validate(data)
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        except ComponentValidationError as e:
            errors = [str(e)]
        return {
            "valid": len(errors) == 0,
            "errors": errors,
            "component_type": component_cls.type_tag,
        }

    @classmethod
    def create_many(cls, items: Iterable[Dict[str, Any]]) -> List[Component]:
        """Build every valid item; invalid ones are logged and skipped."""
        components: List[Component] = []
        for item in items:
            try:
                components.append(cls.create_component(item))
            except (ComponentValidationError, UnrecognizedComponentError) as e:
                logger.warning("Skipping invalid content item", extra={"id": item.get("id"), "error": str(e)})
        return components
