"""
Data models for Strava webhook events and API responses.

This module provides dataclass-based models for parsing inbound webhook
payloads and Strava activity detail with proper type conversion and
validation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Any, Dict

from ..utils.error_handling import ValidationError, validate_required_fields
from ..utils.security import SecurityValidator


def safe_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def safe_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(float(value))  # Handle string numbers
    except (ValueError, TypeError):
        return default


def safe_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ('true', '1')
    if isinstance(value, (int, float)):
        return bool(value)
    return False


@dataclass(frozen=True)
class WebhookEvent:
    """A validated Strava push-subscription event."""

    object_type: str
    aspect_type: str
    object_id: int
    owner_id: int
    event_time: Optional[int] = None
    subscription_id: Optional[int] = None
    updates: Dict[str, Any] = field(default_factory=dict)

    REQUIRED_FIELDS = ('object_type', 'aspect_type', 'object_id', 'owner_id')

    @classmethod
    def from_payload(cls, data: Any) -> 'WebhookEvent':
        """
        Build an event from a raw webhook body.

        Args:
            data: Decoded JSON body posted by Strava

        Returns:
            WebhookEvent instance

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValidationError("Webhook payload must be a JSON object")

        validate_required_fields(data, list(cls.REQUIRED_FIELDS), context="webhook event")

        object_type = data['object_type']
        aspect_type = data['aspect_type']
        if not isinstance(object_type, str) or not isinstance(aspect_type, str):
            raise ValidationError("object_type and aspect_type must be strings", field='object_type')

        owner_id = SecurityValidator.parse_id(data['owner_id'], 'owner_id')
        if not SecurityValidator.validate_athlete_id(owner_id):
            raise ValidationError("Invalid owner_id", field='owner_id', value=owner_id)

        updates = data.get('updates') or {}
        if not isinstance(updates, dict):
            updates = {}

        return cls(
            object_type=SecurityValidator.sanitize_string(object_type, max_length=32),
            aspect_type=SecurityValidator.sanitize_string(aspect_type, max_length=32),
            object_id=SecurityValidator.parse_id(data['object_id'], 'object_id'),
            owner_id=owner_id,
            event_time=safe_int(data.get('event_time'), 0) or None,
            subscription_id=safe_int(data.get('subscription_id'), 0) or None,
            updates=dict(updates)
        )

    def to_log_dict(self) -> Dict[str, Any]:
        """Event fields that are safe to log."""
        return {
            'object_type': self.object_type,
            'aspect_type': self.aspect_type,
            'object_id': self.object_id,
            'owner_id': self.owner_id,
            'event_time': self.event_time,
        }


@dataclass
class StravaActivity:
    """Detailed Strava activity as returned by GET /activities/{id}."""

    # Core identifiers
    id: int
    athlete_id: int
    name: str
    description: str

    # Classification and visibility
    type: str
    sport_type: str
    private: bool
    visibility: Optional[str]
    hide_from_home: bool
    flagged: bool

    # Dates
    start_date: str
    start_date_local: str
    timezone: Optional[str]

    # Distance and time metrics
    distance: float  # meters
    moving_time: int  # seconds
    elapsed_time: int  # seconds
    total_elevation_gain: float  # meters

    # Performance metrics
    average_speed: Optional[float]  # m/s
    max_speed: Optional[float]  # m/s
    average_heartrate: Optional[float]
    max_heartrate: Optional[float]
    elev_high: Optional[float]
    elev_low: Optional[float]

    # Mapping
    map_polyline: Optional[str]
    start_latlng: Optional[List[float]]

    @classmethod
    def from_strava_api(cls, data: Dict[str, Any]) -> 'StravaActivity':
        """
        Create a StravaActivity from Strava API response data.

        Args:
            data: Raw API response data

        Returns:
            StravaActivity instance with parsed data
        """
        validate_required_fields(data, ['id'], context="activity")

        athlete = data.get('athlete') if isinstance(data.get('athlete'), dict) else {}

        map_polyline = None
        if data.get('map') and isinstance(data['map'], dict):
            map_polyline = data['map'].get('summary_polyline')

        start_latlng = data.get('start_latlng')
        if start_latlng and not isinstance(start_latlng, list):
            start_latlng = None

        return cls(
            id=int(data['id']),
            athlete_id=safe_int(athlete.get('id'), 0),
            name=data.get('name') or '',
            description=data.get('description') or '',

            type=data.get('type') or '',
            sport_type=data.get('sport_type') or data.get('type') or '',
            private=safe_bool(data.get('private', False)),
            visibility=data.get('visibility'),
            hide_from_home=safe_bool(data.get('hide_from_home', False)),
            flagged=safe_bool(data.get('flagged', False)),

            start_date=data.get('start_date') or '',
            start_date_local=data.get('start_date_local') or '',
            timezone=data.get('timezone'),

            distance=safe_float(data.get('distance')) or 0.0,
            moving_time=safe_int(data.get('moving_time'), 0),
            elapsed_time=safe_int(data.get('elapsed_time'), 0),
            total_elevation_gain=safe_float(data.get('total_elevation_gain')) or 0.0,

            average_speed=safe_float(data.get('average_speed')),
            max_speed=safe_float(data.get('max_speed')),
            average_heartrate=safe_float(data.get('average_heartrate')),
            max_heartrate=safe_float(data.get('max_heartrate')),
            elev_high=safe_float(data.get('elev_high')),
            elev_low=safe_float(data.get('elev_low')),

            map_polyline=map_polyline,
            start_latlng=start_latlng
        )

    @property
    def url(self) -> str:
        return f"https://www.strava.com/activities/{self.id}"

    @property
    def started_at(self) -> Optional[datetime]:
        """UTC start time, or None when the API omitted or garbled it."""
        if not self.start_date:
            return None
        try:
            started = datetime.fromisoformat(self.start_date.replace('Z', '+00:00'))
        except ValueError:
            return None
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        return started

    @property
    def distance_km(self) -> float:
        """Get distance in kilometers."""
        return self.distance / 1000.0

    @property
    def pace_per_km(self) -> Optional[float]:
        """Get pace in minutes per kilometer."""
        if self.moving_time > 0 and self.distance > 0:
            return (self.moving_time / 60.0) / self.distance_km
        return None

    @property
    def grade_adjusted_pace(self) -> Optional[str]:
        """
        Simplified grade adjusted pace as ``m:ss/km``.

        Every percent of average grade adds roughly 3% to moving time.
        """
        if not self.distance or not self.moving_time or not self.total_elevation_gain:
            return None

        grade_percent = (self.total_elevation_gain / self.distance) * 100
        adjusted_time = self.moving_time * (1 + grade_percent * 0.03)
        seconds_per_km = adjusted_time / self.distance_km

        minutes = int(seconds_per_km // 60)
        seconds = int(round(seconds_per_km % 60))
        if seconds == 60:
            minutes, seconds = minutes + 1, 0
        return f"{minutes}:{seconds:02d}/km"

    def is_cycling_activity(self) -> bool:
        """Check if this is a cycling activity."""
        cycling_types = {'Ride', 'VirtualRide', 'EBikeRide', 'GravelRide', 'MountainBikeRide'}
        return self.sport_type in cycling_types or self.type in cycling_types

    def is_running_activity(self) -> bool:
        """Check if this is a running activity."""
        running_types = {'Run', 'VirtualRun', 'TrailRun'}
        return self.sport_type in running_types or self.type in running_types
