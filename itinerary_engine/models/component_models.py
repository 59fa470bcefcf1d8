from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import time
from decimal import Decimal
from typing import List, Optional
from enum import Enum

from itinerary_engine.utils.errors import CurrencyMismatchError


class ActivityCategory(str, Enum):
    SIGHTSEEING = "sightseeing"
    ADVENTURE = "adventure"
    CULTURAL = "cultural"
    CULINARY = "culinary"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    RELAXATION = "relaxation"
    EDUCATIONAL = "educational"
    NIGHTLIFE = "nightlife"
    SPORTS = "sports"

class Difficulty(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    CHALLENGING = "challenging"

class IndoorOutdoor(str, Enum):
    INDOOR = "indoor"
    OUTDOOR = "outdoor"
    BOTH = "both"

class AccommodationType(str, Enum):
    HOTEL = "hotel"
    RESORT = "resort"
    VACATION_RENTAL = "vacation-rental"
    HOSTEL = "hostel"
    GUESTHOUSE = "guesthouse"
    BOUTIQUE = "boutique"

class TransportationType(str, Enum):
    FLIGHT = "flight"
    TRAIN = "train"
    BUS = "bus"
    CAR = "car"
    BOAT = "boat"
    TAXI = "taxi"
    WALKING = "walking"
    CYCLING = "cycling"

class TouristSeason(str, Enum):
    PEAK = "peak"
    SHOULDER = "shoulder"
    OFF = "off"

VALID_SEASONS = ("spring", "summer", "autumn", "winter", "year-round")


class Money(BaseModel):
    """An amount in a single ISO-4217 currency. Arithmetic never converts implicitly."""
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    currency: str = Field("USD", min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def zero(cls, currency: str = "USD") -> "Money":
        return cls(amount=Decimal("0"), currency=currency)

    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                f"Cannot combine {self.currency} with {other.currency} without conversion"
            )

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def scaled(self, factor) -> "Money":
        return Money(amount=self.amount * Decimal(str(factor)), currency=self.currency)

    def rounded(self) -> "Money":
        return Money(amount=self.amount.quantize(Decimal("0.01")), currency=self.currency)


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class TimeSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_time: time
    end_time: time
    duration: int  # minutes


class AccessibilityInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    wheelchair_accessible: bool = False
    hearing_impaired: bool = False
    visually_impaired: bool = False
    mobility_assistance: bool = False


class RoomType(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    capacity: int
    bed_configuration: str = ""
    amenities: List[str] = Field(default_factory=list)
    price_per_night: Money


class ContactInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None


class VehicleInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    make: Optional[str] = None
    model: Optional[str] = None
    seat_class: Optional[str] = None
    amenities: List[str] = Field(default_factory=list)
