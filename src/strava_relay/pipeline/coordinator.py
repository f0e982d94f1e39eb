"""
Dispatch of a single activity from timer fire to its terminal state.

    queued -> dispatching -> member check -> token -> fetch -> filter -> relay -> recorded

Every step that fails ends the dispatch; nothing is retried here. Strava
redelivers webhooks on its own, and a re-registered member's next activity
goes through the normal path.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .dedup import DedupLedger
from .delay_queue import QueueItem
from ..api.filters import PostingRules, is_eligible_for_relay
from ..api.strava_client import StravaAPIClient
from ..members.registry import MemberRegistry
from ..notifications.discord_relay import DiscordRelay
from ..utils.error_handling import StravaRelayError
from ..utils.logging_config import get_logger, PerformanceTimer

logger = get_logger(__name__)


class DispatchOutcome(Enum):
    RELAYED = "relayed"
    DUPLICATE = "duplicate"
    NOT_MEMBER = "not_member"
    NO_CREDENTIAL = "no_credential"
    NOT_FOUND = "not_found"
    FILTERED = "filtered"
    FAILED = "failed"


@dataclass(frozen=True)
class DispatchResult:
    """Terminal state of one dispatch."""
    item_id: int
    subject_id: int
    outcome: DispatchOutcome
    reason: str = ""
    error: Optional[BaseException] = None

    @property
    def relayed(self) -> bool:
        return self.outcome is DispatchOutcome.RELAYED

    @property
    def discarded(self) -> bool:
        return not self.relayed


class DispatchCoordinator:
    """Runs the dispatch state machine for queue items."""

    def __init__(
        self,
        members: MemberRegistry,
        strava_client: StravaAPIClient,
        relay: DiscordRelay,
        ledger: DedupLedger,
        rules: Optional[PostingRules] = None
    ):
        self.members = members
        self.strava_client = strava_client
        self.relay = relay
        self.ledger = ledger
        self.rules = rules or PostingRules()

    async def dispatch(self, item: QueueItem) -> DispatchResult:
        """
        Take one item to a terminal state.

        Never raises; failures are logged and reported as FAILED.
        """
        try:
            with PerformanceTimer(f"Dispatch activity {item.item_id}"):
                return await self._dispatch(item)
        except Exception as e:
            if isinstance(e, StravaRelayError):
                logger.error(f"Error dispatching activity {item.item_id} for athlete {item.subject_id}: {e}")
            else:
                logger.exception(f"Unexpected error dispatching activity {item.item_id} for athlete {item.subject_id}: {e}")
            return DispatchResult(item.item_id, item.subject_id, DispatchOutcome.FAILED, reason=str(e), error=e)

    async def _dispatch(self, item: QueueItem) -> DispatchResult:
        item_id, subject_id = item.item_id, item.subject_id

        if self.ledger.contains(subject_id, item_id):
            logger.debug(f"Activity {item_id} for athlete {subject_id} already processed, skipping")
            return DispatchResult(item_id, subject_id, DispatchOutcome.DUPLICATE, reason="already processed")

        member = await self.members.get_member_by_athlete_id(subject_id)
        if member is None or not member.is_active:
            logger.warning(f"Athlete {subject_id} is not a registered member, discarding activity {item_id}")
            return DispatchResult(item_id, subject_id, DispatchOutcome.NOT_MEMBER, reason="athlete not registered")

        access_token = await self.members.get_valid_access_token(member)
        if not access_token:
            logger.warning(f"No valid access token for {member.name}, discarding activity {item_id}")
            return DispatchResult(item_id, subject_id, DispatchOutcome.NO_CREDENTIAL, reason="no valid access token")

        logger.debug(f"Fetching latest data for activity {item_id} before posting")
        activity = await self.strava_client.get_activity(item_id, access_token)
        if activity is None:
            logger.warning(f"Activity {item_id} for {member.name} no longer exists, discarding")
            return DispatchResult(item_id, subject_id, DispatchOutcome.NOT_FOUND, reason="activity not found")

        if not is_eligible_for_relay(activity, self.rules):
            self.ledger.record(subject_id, item_id)
            logger.debug(f"Activity {item_id} ({activity.name}) filtered by posting rules")
            return DispatchResult(item_id, subject_id, DispatchOutcome.FILTERED, reason="filtered by posting rules")

        await self.relay.post_activity(activity, member)
        self.ledger.record(subject_id, item_id)

        delayed_minutes = (datetime.now(timezone.utc) - item.enqueued_at).total_seconds() / 60
        logger.info(
            f"Successfully posted activity {item_id} ({activity.name}) for {member.name}, "
            f"delayed by {delayed_minutes:.0f} minutes"
        )
        return DispatchResult(item_id, subject_id, DispatchOutcome.RELAYED)
