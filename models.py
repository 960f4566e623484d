"""Data models for the weather alert service."""

from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Optional, Dict, Any

from email_validator import validate_email, EmailNotValidError

from errors import ValidationError

CITY_MAX_LENGTH = 100
TEMPERATURE_LIMIT = 100  # absolute bound for preference thresholds, °C

@dataclass
class User:
    """Registered user and home location."""
    id: str
    email: str
    city: str
    country: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        return data

@dataclass
class Preferences:
    """Alert preferences, one row per user."""
    id: str
    user_id: str
    min_temp: Optional[int]
    max_temp: Optional[int]
    alert_on_rain: bool
    alert_on_snow: bool
    alert_on_storm: bool
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        data['updated_at'] = self.updated_at.isoformat()
        return data

@dataclass
class PreferencesUpdate:
    """Partial preferences patch. None means "leave unchanged"."""
    min_temp: Optional[int] = None
    max_temp: Optional[int] = None
    alert_on_rain: Optional[bool] = None
    alert_on_snow: Optional[bool] = None
    alert_on_storm: Optional[bool] = None

    @classmethod
    def from_json(cls, payload: Any) -> "PreferencesUpdate":
        """Build a patch from a decoded JSON body, rejecting bad types."""
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")

        update = cls()
        for name in ('min_temp', 'max_temp'):
            value = payload.get(name)
            if value is None:
                continue
            # bool is a subclass of int
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{name} must be an integer")
            if not -TEMPERATURE_LIMIT <= value <= TEMPERATURE_LIMIT:
                raise ValidationError(
                    f"{name} must be between {-TEMPERATURE_LIMIT} and {TEMPERATURE_LIMIT}"
                )
            setattr(update, name, value)

        for name in ('alert_on_rain', 'alert_on_snow', 'alert_on_storm'):
            value = payload.get(name)
            if value is None:
                continue
            if not isinstance(value, bool):
                raise ValidationError(f"{name} must be a boolean")
            setattr(update, name, value)

        return update

    def check_bounds(self, current: Optional[Preferences]) -> None:
        """Reject a patch whose merged bounds would have max below min."""
        min_temp = self.min_temp
        max_temp = self.max_temp
        if current is not None:
            if min_temp is None:
                min_temp = current.min_temp
            if max_temp is None:
                max_temp = current.max_temp
        if min_temp is not None and max_temp is not None and max_temp < min_temp:
            raise ValidationError(
                f"max_temp ({max_temp}) must be greater than or equal to min_temp ({min_temp})"
            )

@dataclass
class Observation:
    """One current-conditions snapshot for a city."""
    city: str
    country: str
    temperature: float
    feels_like: float
    conditions: str
    description: str
    humidity: int
    wind_speed: float
    pressure: int
    fetched_at: datetime
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['fetched_at'] = self.fetched_at.isoformat()
        return data

@dataclass
class AlertLogEntry:
    """Record of an alert email accepted for delivery."""
    id: str
    user_id: str
    alert_type: str
    message: str
    sent_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['sent_at'] = self.sent_at.isoformat()
        return data

@dataclass(frozen=True)
class CityInfo:
    """A (city, country) pair of the fetch fan-out."""
    city: str
    country: str

@dataclass
class PassSummary:
    """Counters for one fetch-evaluate-notify pass."""
    cities: int = 0
    observations_stored: int = 0
    failed_cities: list = field(default_factory=list)
    alerts_sent: int = 0
    alerts_failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_email(email: Any) -> str:
    """Validate an email address (syntax only) and return its normalized form."""
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("email is required")
    try:
        result = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email address: {e}")
    return result.normalized


def normalize_city(city: Any) -> str:
    if not isinstance(city, str) or not city.strip():
        raise ValidationError("city is required")
    city = city.strip()
    if len(city) > CITY_MAX_LENGTH:
        raise ValidationError(f"city must be at most {CITY_MAX_LENGTH} characters")
    return city


def normalize_country(country: Any) -> str:
    """ISO 3166-1 alpha-2 code, uppercased."""
    if not isinstance(country, str):
        raise ValidationError("country is required")
    country = country.strip()
    if len(country) != 2 or not country.isascii() or not country.isalpha():
        raise ValidationError("country must be a two-letter ISO 3166-1 code")
    return country.upper()
