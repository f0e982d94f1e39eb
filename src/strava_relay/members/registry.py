"""
Registered members and their Strava credentials.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from ..utils.config import Config, MemberConfig
from ..utils.error_handling import APIError
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

# Strava access tokens last six hours
DEFAULT_TOKEN_LIFETIME = 6 * 3600

TokenRefresher = Callable[[str], Awaitable[Dict[str, Any]]]


@dataclass
class Member:
    """A Strava athlete whose activities are relayed."""
    athlete_id: int
    name: str
    access_token: str
    refresh_token: str
    expires_at: int
    discord_user_id: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_config(cls, config: MemberConfig) -> 'Member':
        return cls(
            athlete_id=config.athlete_id,
            name=config.name,
            access_token=config.access_token,
            refresh_token=config.refresh_token,
            expires_at=config.expires_at,
            discord_user_id=config.discord_user_id
        )

    @property
    def mention(self) -> str:
        """Discord mention if the member linked a Discord account, else the name."""
        if self.discord_user_id:
            return f"<@{self.discord_user_id}>"
        return self.name

    def token_is_fresh(self, margin_seconds: int = 3600, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return bool(self.expires_at) and self.expires_at > now + margin_seconds


class MemberRegistry:
    """
    In-memory member lookup with token refresh.

    Tokens expiring within ``refresh_margin`` seconds are refreshed through
    ``token_refresher`` before being handed out.
    """

    def __init__(
        self,
        members: Iterable[Member] = (),
        token_refresher: Optional[TokenRefresher] = None,
        refresh_margin: int = 3600
    ):
        self._members: Dict[int, Member] = {}
        self._refresh_locks: Dict[int, asyncio.Lock] = {}
        self.token_refresher = token_refresher
        self.refresh_margin = refresh_margin

        for member in members:
            self.add_member(member)

    @classmethod
    def from_config(cls, config: Config, token_refresher: Optional[TokenRefresher] = None) -> 'MemberRegistry':
        return cls(
            members=[Member.from_config(member) for member in config.members],
            token_refresher=token_refresher
        )

    def add_member(self, member: Member) -> None:
        self._members[member.athlete_id] = member
        logger.debug(f"Registered member {member.name} (athlete {member.athlete_id})")

    async def get_member_by_athlete_id(self, athlete_id: int) -> Optional[Member]:
        return self._members.get(athlete_id)

    def get_all_members(self) -> List[Member]:
        """All active members."""
        return [member for member in self._members.values() if member.is_active]

    def member_count(self) -> int:
        return len(self.get_all_members())

    def deactivate(self, athlete_id: int) -> bool:
        member = self._members.get(athlete_id)
        if member is None:
            return False
        member.is_active = False
        logger.info(f"Deactivated member {member.name} (athlete {athlete_id})")
        return True

    def reactivate(self, athlete_id: int) -> bool:
        member = self._members.get(athlete_id)
        if member is None:
            return False
        member.is_active = True
        logger.info(f"Reactivated member {member.name} (athlete {athlete_id})")
        return True

    @staticmethod
    def _expiry_from(token_data: Dict[str, Any]) -> int:
        """Absolute expiry from a refresh response, falling back to ``expires_in`` then the default lifetime."""
        expires_at = token_data.get('expires_at')
        if expires_at:
            return int(expires_at)
        expires_in = token_data.get('expires_in') or DEFAULT_TOKEN_LIFETIME
        return int(time.time() + int(expires_in))

    async def get_valid_access_token(self, member: Member) -> Optional[str]:
        """
        Return a usable access token for ``member``, refreshing it if needed.

        Returns:
            The access token, or None if it is stale and could not be refreshed
        """
        if member.token_is_fresh(self.refresh_margin):
            return member.access_token

        lock = self._refresh_locks.setdefault(member.athlete_id, asyncio.Lock())
        async with lock:
            # Another dispatch may have refreshed while we waited
            if member.token_is_fresh(self.refresh_margin):
                return member.access_token

            if self.token_refresher is None:
                logger.warning(f"Token for {member.name} expired and no refresher is configured")
                return None

            logger.debug(f"Token for {member.name} expires at {member.expires_at}, refreshing")

            try:
                token_data = await self.token_refresher(member.refresh_token)
            except APIError as e:
                logger.warning(f"Failed to refresh token for {member.name} (athlete {member.athlete_id}): {e}")
                return None

            member.access_token = token_data['access_token']
            member.refresh_token = token_data.get('refresh_token') or member.refresh_token
            member.expires_at = self._expiry_from(token_data)

            logger.info(f"Refreshed access token for {member.name}")
            return member.access_token
