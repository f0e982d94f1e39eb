"""
Posting rules deciding whether an activity may be relayed.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .models import StravaActivity
from ..utils.config import PostingConfig
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PostingRules:
    """Thresholds applied to freshly fetched activity detail."""
    min_moving_time: int = 60  # seconds
    min_distance: float = 100  # meters
    max_age_hours: float = 24

    @classmethod
    def from_config(cls, posting: PostingConfig) -> 'PostingRules':
        return cls(
            min_moving_time=posting.min_moving_time,
            min_distance=posting.min_distance,
            max_age_hours=posting.max_age_hours
        )


def is_eligible_for_relay(
    activity: StravaActivity,
    rules: Optional[PostingRules] = None,
    skip_age_filter: bool = False,
    now: Optional[datetime] = None
) -> bool:
    """
    Check whether an activity should be posted.

    Only fully public activities that are shown on the home feed, not
    flagged, recent enough and long enough qualify.

    Args:
        activity: Activity detail fetched from the API
        rules: Thresholds to apply (defaults to PostingRules())
        skip_age_filter: Ignore the maximum age (manual look-ups)
        now: Reference time, defaults to the current UTC time

    Returns:
        True if the activity may be relayed
    """
    rules = rules or PostingRules()

    if activity.private:
        logger.debug(f"Skipping private activity {activity.id} ({activity.name})")
        return False

    if activity.visibility == 'followers_only':
        logger.debug(f"Skipping followers-only activity {activity.id} ({activity.name})")
        return False

    if activity.hide_from_home:
        logger.debug(f"Skipping activity {activity.id} hidden from home feed")
        return False

    if activity.flagged:
        logger.debug(f"Skipping flagged activity {activity.id}")
        return False

    if not skip_age_filter:
        started_at = activity.started_at
        if started_at is None:
            logger.debug(f"Skipping activity {activity.id} with unknown start date")
            return False

        now = now or datetime.now(timezone.utc)
        hours_old = (now - started_at).total_seconds() / 3600
        if hours_old > rules.max_age_hours:
            logger.debug(f"Skipping old activity {activity.id} ({hours_old:.1f} hours old)")
            return False

    if activity.moving_time < rules.min_moving_time:
        logger.debug(f"Skipping short activity {activity.id} (moving time {activity.moving_time}s)")
        return False

    if not activity.distance or activity.distance < rules.min_distance:
        logger.debug(f"Skipping activity {activity.id} with distance {activity.distance}m")
        return False

    return True
