"""
Discord notification relay using an incoming webhook.

This module posts processed Strava activities to a Discord channel as a
single embed, with formatting helpers for distances, durations and paces.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from ..api.models import StravaActivity
from ..members.registry import Member
from ..utils.config import DiscordConfig
from ..utils.logging_config import get_logger, PerformanceTimer
from ..utils.error_handling import RelayError

logger = get_logger(__name__)

STRAVA_ORANGE = 0xFC4C02


def format_distance(distance_m: Optional[float]) -> str:
    """Format distance in kilometers."""
    if not distance_m:
        return "0.00 km"
    return f"{distance_m / 1000:.2f} km"


def format_duration(seconds: Optional[int]) -> str:
    """Format a duration as h:mm:ss or m:ss."""
    if not seconds:
        return "0:00"
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_pace(pace_min_per_km: Optional[float]) -> Optional[str]:
    """Format minutes per kilometer as m:ss/km."""
    if not pace_min_per_km:
        return None
    total_seconds = int(round(pace_min_per_km * 60))
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}/km"


def format_elevation(elevation_m: Optional[float]) -> str:
    """Format elevation in meters."""
    if elevation_m is None:
        return "0 m"
    return f"{int(elevation_m):,} m"


def format_activity_embed(activity: StravaActivity, member: Member) -> Dict[str, Any]:
    """
    Build the Discord embed for an activity.

    Args:
        activity: Freshly fetched activity detail
        member: Owner of the activity

    Returns:
        Embed dictionary as accepted by the Discord webhook API
    """
    fields: List[Dict[str, Any]] = [
        {'name': 'Distance', 'value': format_distance(activity.distance), 'inline': True},
        {'name': 'Moving Time', 'value': format_duration(activity.moving_time), 'inline': True},
    ]

    pace = format_pace(activity.pace_per_km)
    if pace and not activity.is_cycling_activity():
        fields.append({'name': 'Pace', 'value': pace, 'inline': True})
    elif activity.average_speed:
        fields.append({'name': 'Avg Speed', 'value': f"{activity.average_speed * 3.6:.1f} km/h", 'inline': True})

    if activity.is_running_activity() and activity.grade_adjusted_pace:
        fields.append({'name': 'GAP', 'value': activity.grade_adjusted_pace, 'inline': True})

    if activity.total_elevation_gain:
        fields.append({'name': 'Elevation', 'value': format_elevation(activity.total_elevation_gain), 'inline': True})

    if activity.average_heartrate:
        fields.append({'name': 'Avg HR', 'value': f"{activity.average_heartrate:.0f} bpm", 'inline': True})

    embed = {
        'title': activity.name or 'Activity',
        'url': activity.url,
        'color': STRAVA_ORANGE,
        'author': {'name': member.name},
        'fields': fields,
        'footer': {'text': activity.sport_type or activity.type or 'Activity'},
    }

    if activity.description:
        embed['description'] = activity.description[:2048]

    started_at = activity.started_at
    if started_at:
        embed['timestamp'] = started_at.astimezone(timezone.utc).isoformat()

    return embed


class DiscordRelay:
    """
    Posts activities to a Discord channel through its webhook URL.

    Use as an async context manager so the aiohttp session is managed with
    the relay.
    """

    def __init__(self, config: DiscordConfig, timeout: float = 30):
        """
        Initialize the Discord relay.

        Args:
            config: Discord webhook configuration
            timeout: Total timeout per HTTP request in seconds
        """
        self.config = config
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.posted_count = 0

    async def __aenter__(self) -> 'DiscordRelay':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    def build_payload(self, activity: StravaActivity, member: Member) -> Dict[str, Any]:
        payload = {
            'username': self.config.username,
            'embeds': [format_activity_embed(activity, member)],
            'allowed_mentions': {'parse': []},
        }
        if member.discord_user_id:
            payload['content'] = f"New activity from {member.mention}"
            payload['allowed_mentions'] = {'users': [member.discord_user_id]}
        return payload

    async def post_activity(self, activity: StravaActivity, member: Member) -> None:
        """
        Post one activity to the configured channel.

        Raises:
            RelayError: If Discord rejects the message or cannot be reached
        """
        if not self.session:
            raise RelayError("Relay session not initialized. Use async context manager.")

        with PerformanceTimer(f"Post activity {activity.id} to Discord"):
            try:
                async with self.session.post(self.config.webhook_url, json=self.build_payload(activity, member)) as response:
                    if response.status not in (200, 204):
                        body = await response.text()
                        raise RelayError(
                            f"Discord webhook returned {response.status}: {body[:200]}",
                            status_code=response.status
                        )
            except aiohttp.ClientError as e:
                raise RelayError(f"Discord request error: {e}", original_error=e)

        self.posted_count += 1
        logger.info(f"Posted activity {activity.id} ({activity.name}) for {member.name} to Discord "
                    f"at {datetime.now(timezone.utc).isoformat()}")
