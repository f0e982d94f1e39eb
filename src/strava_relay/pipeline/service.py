"""
Activity pipeline: the single owner of the delay queue, rate limiter,
dedup ledger and dispatch coordinator.

All methods must run on the event loop the pipeline was started on.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .classifier import EventAction, classify
from .coordinator import DispatchCoordinator, DispatchResult
from .dedup import DedupLedger
from .delay_queue import DelayQueue
from .rate_limiter import SlidingWindowRateLimiter
from ..api.filters import PostingRules
from ..api.models import WebhookEvent, safe_int
from ..api.strava_client import StravaAPIClient
from ..members.registry import Member, MemberRegistry
from ..notifications.discord_relay import DiscordRelay
from ..utils.config import Config, PostingConfig
from ..utils.error_handling import DuplicateQueueItemError, StravaRelayError, handle_async_errors
from ..utils.logging_config import get_logger, PerformanceTimer

logger = get_logger(__name__)


class ActivityPipeline:
    """Turns webhook events into delayed, rate-limited Discord posts."""

    def __init__(
        self,
        posting: PostingConfig,
        members: MemberRegistry,
        strava_client: StravaAPIClient,
        relay: DiscordRelay,
        rate_limiter: SlidingWindowRateLimiter,
        ledger: Optional[DedupLedger] = None
    ):
        """
        Initialize the pipeline.

        Args:
            posting: Delay, budget and eligibility settings
            members: Member lookup and token provider
            strava_client: Client whose requests go through ``rate_limiter``
            relay: Downstream Discord relay
            rate_limiter: Shared limiter, exposed for stats
            ledger: Dedup ledger (a new one sized from ``posting`` by default)
        """
        self.posting = posting
        self.members = members
        self.strava_client = strava_client
        self.relay = relay
        self.rate_limiter = rate_limiter
        self.ledger = ledger if ledger is not None else DedupLedger(max_size=posting.dedup_max_size)

        self.coordinator = DispatchCoordinator(
            members=members,
            strava_client=strava_client,
            relay=relay,
            ledger=self.ledger,
            rules=PostingRules.from_config(posting)
        )
        self.queue = DelayQueue(self.coordinator.dispatch, posting.delay_seconds)
        self.started_at = datetime.now(timezone.utc)

    @classmethod
    def from_config(cls, config: Config) -> 'ActivityPipeline':
        """Wire up every component from application configuration."""
        rate_limiter = SlidingWindowRateLimiter.from_config(config.posting)
        strava_client = StravaAPIClient(config.strava, rate_limiter)
        members = MemberRegistry.from_config(config, token_refresher=strava_client.refresh_access_token)
        relay = DiscordRelay(config.discord)
        return cls(config.posting, members, strava_client, relay, rate_limiter)

    async def start(self) -> None:
        await self.strava_client.open()
        await self.relay.open()
        logger.info(
            f"Activity pipeline started ({self.members.member_count()} members, "
            f"delay {self.posting.delay_minutes:g} minutes)"
        )

    async def close(self) -> None:
        self.shutdown()
        await self.strava_client.close()
        await self.relay.close()

    async def __aenter__(self) -> 'ActivityPipeline':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @staticmethod
    def _payload(event: WebhookEvent) -> Dict[str, Any]:
        payload = event.to_log_dict()
        payload['updates'] = dict(event.updates)
        return payload

    async def on_webhook_event(self, raw_event: Union[Dict[str, Any], WebhookEvent]) -> EventAction:
        """
        Apply one inbound webhook event to the delay queue.

        Args:
            raw_event: Decoded webhook body, or an already validated event

        Returns:
            The action taken

        Raises:
            ValidationError: If the body is not a well-formed Strava event
        """
        event = raw_event if isinstance(raw_event, WebhookEvent) else WebhookEvent.from_payload(raw_event)
        action = classify(event)

        if action is EventAction.ENQUEUE:
            await self._enqueue(event)
        elif action is EventAction.UPDATE:
            await self._update(event)
        elif action is EventAction.CANCEL:
            self._cancel(event)
        else:
            logger.info(f"Ignoring {event.object_type} {event.aspect_type} event for {event.object_id}")

        return action

    async def _enqueue(self, event: WebhookEvent) -> Optional[DispatchResult]:
        if self.queue.is_dispatching(event.object_id):
            logger.info(f"Activity {event.object_id} is already being dispatched, ignoring {event.aspect_type} event")
            return None

        payload = self._payload(event)
        try:
            return await self.queue.enqueue(event.object_id, event.owner_id, payload)
        except DuplicateQueueItemError:
            # Redelivered create while the first one is still waiting
            logger.info(f"Activity {event.object_id} already queued, refreshing its data instead")
            self.queue.update_in_place(event.object_id, payload)
            return None

    async def _update(self, event: WebhookEvent) -> None:
        if self.queue.update_in_place(event.object_id, self._payload(event)):
            logger.info(f"Updated queued activity {event.object_id} with new data")
            return

        if self.queue.is_dispatching(event.object_id):
            logger.debug(f"Activity {event.object_id} is being dispatched, ignoring update")
            return

        if self.ledger.contains(event.owner_id, event.object_id):
            logger.debug(f"Activity {event.object_id} already processed, ignoring update")
            return

        logger.debug(f"Update received for non-queued activity {event.object_id}, queueing it")
        await self._enqueue(event)

    def _cancel(self, event: WebhookEvent) -> None:
        if self.queue.cancel(event.object_id):
            logger.info(f"Removed deleted activity {event.object_id} from queue")
        else:
            logger.debug(f"Deletion received for non-queued activity {event.object_id}")

    async def process_recent_activities(self, hours_back: float = 24) -> int:
        """
        Dispatch every member's recent activities right away.

        Used for an initial sync or to recover after downtime; the dedup
        ledger keeps already posted activities from being posted again, and
        activities still waiting in the delay queue or already being
        dispatched are left alone.

        Returns:
            Number of activities relayed
        """
        after = int(time.time() - hours_back * 3600)
        members = self.members.get_all_members()
        relayed = 0

        logger.info(f"Processing recent activities for {len(members)} members (last {hours_back:g} hours)")

        with PerformanceTimer(f"Process recent activities ({hours_back:g}h)"):
            for member in members:
                relayed += await self._sync_member(member, after)

        logger.info(f"Finished processing recent activities, {relayed} posted")
        return relayed

    @handle_async_errors(default_return=0, error_types=(StravaRelayError,))
    async def _sync_member(self, member: Member, after: int) -> int:
        access_token = await self.members.get_valid_access_token(member)
        if not access_token:
            logger.warning(f"Unable to get valid access token for {member.name}, skipping recent activities")
            return 0

        activities = await self.strava_client.get_athlete_activities(access_token, per_page=30, after=after)
        logger.info(f"Found {len(activities)} recent activities for {member.name}")

        relayed = 0
        for summary in activities:
            activity_id = safe_int(summary.get('id'), 0)
            if not activity_id or self.queue.is_pending(activity_id):
                continue

            result = await self.queue.dispatch_now(activity_id, member.athlete_id, {'source': 'recent_sync'})
            if result.relayed:
                relayed += 1
        return relayed

    def queue_stats(self) -> Dict[str, Any]:
        return self.queue.stats()

    def limiter_stats(self) -> Dict[str, Any]:
        return self.rate_limiter.stats()

    def stats(self) -> Dict[str, Any]:
        """Everything a status command needs; read only."""
        return {
            'queue': self.queue_stats(),
            'rate_limiter': self.limiter_stats(),
            'dedup': self.ledger.stats(),
            'registered_members': self.members.member_count(),
            'uptime_seconds': int((datetime.now(timezone.utc) - self.started_at).total_seconds()),
        }

    def shutdown(self) -> None:
        """Cancel pending timers; in-flight dispatches are left to finish or die with the loop."""
        logger.info("Shutting down activity pipeline")
        self.queue.shutdown()
