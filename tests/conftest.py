import pytest
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from itinerary_engine.components.accommodation import Accommodation
from itinerary_engine.components.activity import Activity
from itinerary_engine.components.destination import Destination
from itinerary_engine.components.transportation import Transportation
from itinerary_engine.models.component_models import (
    AccessibilityInfo, ContactInfo, Coordinates, Money, RoomType, TimeSlot
)
from itinerary_engine.models.request_models import UserPreferences

PARIS = Coordinates(latitude=48.8566, longitude=2.3522)


def _slot(start: time, minutes: int) -> TimeSlot:
    end_minutes = start.hour * 60 + start.minute + minutes
    return TimeSlot(start_time=start, end_time=time(end_minutes // 60, end_minutes % 60), duration=minutes)


@pytest.fixture
def make_activity():
    """Factory for valid activities; keyword arguments override the defaults"""
    def build(id="act_1", duration=120, cost=None, currency="EUR", **overrides):
        data = dict(
            id=id,
            title=f"Activity {id}",
            description="A guided visit",
            category="cultural",
            location="Louvre, Paris",
            coordinates=PARIS,
            time_slot=_slot(time(10, 0), duration),
            estimated_cost=Money(amount=Decimal(str(cost)), currency=currency) if cost is not None else None,
        )
        data.update(overrides)
        return Activity.model_validate(data)
    return build


@pytest.fixture
def make_accommodation():
    """Factory for valid accommodations"""
    def build(id="acc_1", star_rating=3, type="hotel", price=120, **overrides):
        data = dict(
            id=id,
            title=f"Hotel {id}",
            description="Central hotel",
            type=type,
            location="Paris",
            coordinates=PARIS,
            star_rating=star_rating,
            room_types=[RoomType(
                name="Double",
                capacity=2,
                price_per_night=Money(amount=Decimal(str(price)), currency="EUR"),
            )],
            contact_info=ContactInfo(address="1 Rue de Rivoli, Paris"),
        )
        data.update(overrides)
        return Accommodation.model_validate(data)
    return build


@pytest.fixture
def make_destination():
    """Factory for valid destinations"""
    def build(id="dest_paris", location="Paris", latitude=48.8566, longitude=2.3522, **overrides):
        data = dict(
            id=id,
            title=location,
            description=f"Visiting {location}",
            location=location,
            coordinates=Coordinates(latitude=latitude, longitude=longitude),
            country_code="FR",
            local_currency="EUR",
        )
        data.update(overrides)
        return Destination.model_validate(data)
    return build


@pytest.fixture
def make_transportation():
    """Factory for valid transportation legs"""
    def build(id="tr_1", type="train", duration=135, **overrides):
        departure = datetime(2025, 6, 5, 9, 0)
        data = {
            "id": id,
            "title": f"Transfer {id}",
            "description": "Intercity transfer",
            "type": type,
            "from": "Paris",
            "to": "Lyon",
            "from_coordinates": PARIS,
            "to_coordinates": Coordinates(latitude=45.764, longitude=4.8357),
            "departure_time": departure,
            "arrival_time": departure + timedelta(minutes=duration),
            "duration": duration,
        }
        if type == "flight":
            data["carrier"] = "Air France"
        data.update(overrides)
        return Transportation.model_validate(data)
    return build


@pytest.fixture
def paris_preferences():
    """Thirteen days in Paris for four adults"""
    return UserPreferences(
        start_date=date(2025, 6, 1),
        end_date=date(2025, 6, 14),
        primary_destination="Paris",
        adults=4,
        budget_min=Decimal("1000"),
        budget_max=Decimal("50000"),
        currency="USD",
        interests=["cultural", "culinary"],
        accommodation_type="3-star",
    )


@pytest.fixture
def paris_preferences_per_person_budget(paris_preferences):
    """The same trip held to 2400 per person"""
    return paris_preferences.model_copy(update={"budget_max": Decimal("9600")})


@pytest.fixture
def accessible():
    return AccessibilityInfo(wheelchair_accessible=True)
