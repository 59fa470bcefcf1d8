"""
Validation pipeline for content components.

Each check is a plain function taking a component and raising
ComponentValidationError on the first violated invariant. Component types
declare which checks apply by listing them in their pipeline tuple; the
pipeline runs once at construction and again on every update.
"""
import re
from typing import Callable, Iterable
from urllib.parse import urlparse

from itinerary_engine.models.component_models import VALID_SEASONS
from itinerary_engine.utils.errors import ComponentValidationError

Check = Callable[[object], None]

_HHMM_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

DURATION_TOLERANCE_MINUTES = 5
MIN_TRAIN_MINUTES = 10
MAX_WALKING_MINUTES = 480
MAX_CYCLING_MINUTES = 720


def run_checks(component, checks: Iterable[Check]) -> None:
    for check in checks:
        check(component)


def _fail(component, field: str, message: str):
    raise ComponentValidationError(message, field=field, component_id=getattr(component, "id", None))


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value or "")
    return bool(parsed.scheme and parsed.netloc)


def is_valid_image_ref(value: str) -> bool:
    return is_valid_url(value) or value.startswith("/") or value.startswith("./")


def is_valid_hhmm(value: str) -> bool:
    return bool(_HHMM_RE.match(value or ""))


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value or ""))


# --- common checks ---

def check_identity(c) -> None:
    if not c.id or not c.id.strip():
        _fail(c, "id", "Component ID is required")
    if not c.title or not c.title.strip():
        _fail(c, "title", "Component title is required")
    if not c.description or not c.description.strip():
        _fail(c, "description", "Component description is required")


def check_booking_url(c) -> None:
    if c.booking_url and not is_valid_url(c.booking_url):
        _fail(c, "booking_url", f"Invalid booking URL format: {c.booking_url}")


def check_estimated_cost(c) -> None:
    cost = c.estimated_cost
    if cost is None:
        return
    if cost.amount < 0:
        _fail(c, "estimated_cost", "Cost amount cannot be negative")
    if not _CURRENCY_RE.match(cost.currency or ""):
        _fail(c, "estimated_cost", "Currency must be a valid 3-letter code")


def check_images(c) -> None:
    for image in c.images:
        if image and not is_valid_image_ref(image):
            _fail(c, "images", f"Invalid image URL: {image}")


def check_location(c) -> None:
    if not c.location or not c.location.strip():
        _fail(c, "location", f"{c.component_type().capitalize()} location is required")


COMMON_CHECKS = (check_identity, check_booking_url, check_estimated_cost, check_images)


# --- activity ---

def check_time_slot(c) -> None:
    slot = c.time_slot
    if slot.duration <= 0:
        _fail(c, "time_slot", "Activity duration must be positive")
    if slot.start_time >= slot.end_time:
        _fail(c, "time_slot", "Activity start time must be before end time")


def check_group_limits(c) -> None:
    if c.min_age is not None and c.min_age < 0:
        _fail(c, "min_age", "Minimum age cannot be negative")
    if c.max_group_size is not None and c.max_group_size <= 0:
        _fail(c, "max_group_size", "Maximum group size must be positive")


def check_seasonality(c) -> None:
    for season in c.seasonality:
        if season.lower() not in VALID_SEASONS:
            _fail(c, "seasonality", f"Invalid season: {season}")


ACTIVITY_CHECKS = COMMON_CHECKS + (check_time_slot, check_group_limits, check_location, check_seasonality)


# --- accommodation ---

def check_star_rating(c) -> None:
    if c.star_rating is not None and not 1 <= c.star_rating <= 5:
        _fail(c, "star_rating", "Star rating must be between 1 and 5")


def check_stay_times(c) -> None:
    if not is_valid_hhmm(c.check_in_time):
        _fail(c, "check_in_time", "Invalid check-in time format")
    if not is_valid_hhmm(c.check_out_time):
        _fail(c, "check_out_time", "Invalid check-out time format")


def check_room_types(c) -> None:
    if not c.room_types:
        _fail(c, "room_types", "At least one room type is required")
    for room in c.room_types:
        if not room.name or not room.name.strip():
            _fail(c, "room_types", "Room type name is required")
        if room.capacity <= 0:
            _fail(c, "room_types", "Room capacity must be positive")
        if room.price_per_night.amount < 0:
            _fail(c, "room_types", "Room price cannot be negative")


def check_contact_info(c) -> None:
    contact = c.contact_info
    if not contact.address or not contact.address.strip():
        _fail(c, "contact_info", "Contact address is required")
    if contact.email and not is_valid_email(contact.email):
        _fail(c, "contact_info", "Invalid email format")
    if contact.website and not is_valid_url(contact.website):
        _fail(c, "contact_info", "Invalid website URL")


ACCOMMODATION_CHECKS = COMMON_CHECKS + (
    check_star_rating, check_stay_times, check_location, check_room_types, check_contact_info
)


# --- transportation ---

def check_schedule(c) -> None:
    if c.duration <= 0:
        _fail(c, "duration", "Transportation duration must be positive")
    if c.departure_time >= c.arrival_time:
        _fail(c, "departure_time", "Departure time must be before arrival time")
    elapsed = (c.arrival_time - c.departure_time).total_seconds() / 60
    if abs(elapsed - c.duration) > DURATION_TOLERANCE_MINUTES:
        _fail(c, "duration", "Duration does not match departure and arrival times")


def check_route(c) -> None:
    if not c.from_location or not c.from_location.strip():
        _fail(c, "from", "From location is required")
    if not c.to_location or not c.to_location.strip():
        _fail(c, "to", "To location is required")
    if c.from_location == c.to_location:
        _fail(c, "to", "From and to locations cannot be the same")


def check_mode_rules(c) -> None:
    mode = c.type.value
    if mode == "flight" and not c.carrier:
        _fail(c, "carrier", "Airline carrier is required for flights")
    elif mode == "train" and c.duration < MIN_TRAIN_MINUTES:
        _fail(c, "duration", "Train journey duration seems too short")
    elif mode == "walking" and c.duration > MAX_WALKING_MINUTES:
        _fail(c, "duration", "Walking duration seems unreasonably long")
    elif mode == "cycling" and c.duration > MAX_CYCLING_MINUTES:
        _fail(c, "duration", "Cycling duration seems unreasonably long")


TRANSPORTATION_CHECKS = COMMON_CHECKS + (check_schedule, check_route, check_mode_rules)


# --- destination ---

def check_region(c) -> None:
    if not re.match(r"^[A-Za-z]{2}$", c.country_code or ""):
        _fail(c, "country_code", "Country code must be a 2-letter ISO code")
    if not _CURRENCY_RE.match((c.local_currency or "").upper()):
        _fail(c, "local_currency", "Local currency must be a valid 3-letter code")
    if c.safety_rating is not None and not 1 <= c.safety_rating <= 10:
        _fail(c, "safety_rating", "Safety rating must be between 1 and 10")


DESTINATION_CHECKS = COMMON_CHECKS + (check_location, check_region)
