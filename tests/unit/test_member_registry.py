"""
Unit tests for the member registry.
"""

import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from strava_relay.members.registry import Member, MemberRegistry
from strava_relay.utils.error_handling import AuthenticationError


class TestMember:
    """Test Member dataclass"""

    def test_from_config(self, app_config):
        """Test building a member from configuration"""
        member = Member.from_config(app_config.members[0])

        assert member.athlete_id == 12345
        assert member.name == "Test Athlete"
        assert member.discord_user_id == "555000111"
        assert member.is_active

    def test_mention(self, member):
        """Test Discord mention formatting"""
        assert member.mention == "<@555000111>"
        member.discord_user_id = None
        assert member.mention == "Test Athlete"

    def test_token_is_fresh(self, member):
        """Test tokens within the margin count as stale"""
        now = 1_700_000_000
        member.expires_at = now + 7200
        assert member.token_is_fresh(3600, now=now)

        member.expires_at = now + 1800
        assert not member.token_is_fresh(3600, now=now)

        member.expires_at = 0
        assert not member.token_is_fresh(3600, now=now)


class TestMemberRegistry:
    """Test MemberRegistry class"""

    @pytest.mark.asyncio
    async def test_lookup(self, member):
        """Test lookup by athlete id"""
        registry = MemberRegistry([member])

        assert await registry.get_member_by_athlete_id(12345) is member
        assert await registry.get_member_by_athlete_id(99999) is None

    def test_from_config(self, app_config):
        """Test loading configured members"""
        registry = MemberRegistry.from_config(app_config)

        assert registry.member_count() == 1
        assert registry.get_all_members()[0].name == "Test Athlete"

    def test_deactivate_and_reactivate(self, member):
        """Test inactive members are excluded from listings"""
        registry = MemberRegistry([member])

        assert registry.deactivate(12345)
        assert registry.member_count() == 0
        assert not member.is_active

        assert registry.reactivate(12345)
        assert registry.member_count() == 1

        assert not registry.deactivate(99999)
        assert not registry.reactivate(99999)

    @pytest.mark.asyncio
    async def test_fresh_token_returned(self, member):
        """Test a token valid for more than an hour is used as is"""
        refresher = AsyncMock()
        registry = MemberRegistry([member], token_refresher=refresher)

        assert await registry.get_valid_access_token(member) == "test_access_token"
        refresher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_token_refreshed(self, member):
        """Test a token expiring within the hour is refreshed"""
        member.expires_at = int(time.time()) + 600
        new_expiry = int(time.time()) + 21600
        refresher = AsyncMock(return_value={
            'access_token': 'new_access', 'refresh_token': 'new_refresh', 'expires_at': new_expiry
        })
        registry = MemberRegistry([member], token_refresher=refresher)

        assert await registry.get_valid_access_token(member) == "new_access"

        refresher.assert_awaited_once_with("test_refresh_token")
        assert member.refresh_token == "new_refresh"
        assert member.expires_at == new_expiry

    @pytest.mark.asyncio
    async def test_concurrent_refresh_happens_once(self, member):
        """Test parallel dispatches for one member share a single refresh"""
        member.expires_at = 0

        async def refresh(refresh_token):
            await asyncio.sleep(0.01)
            return {'access_token': 'new_access', 'expires_at': int(time.time()) + 21600}

        refresher = AsyncMock(side_effect=refresh)
        registry = MemberRegistry([member], token_refresher=refresher)

        tokens = await asyncio.gather(*(registry.get_valid_access_token(member) for _ in range(3)))

        assert tokens == ["new_access"] * 3
        assert refresher.await_count == 1
        # Refresh responses without a new refresh token keep the old one
        assert member.refresh_token == "test_refresh_token"

    @pytest.mark.asyncio
    async def test_refresh_without_expiry_not_repeated(self, member):
        """Test a refresh response without expires_at still yields a usable token lifetime"""
        member.expires_at = 0
        refresher = AsyncMock(return_value={'access_token': 'new_access'})
        registry = MemberRegistry([member], token_refresher=refresher)

        assert await registry.get_valid_access_token(member) == "new_access"
        assert await registry.get_valid_access_token(member) == "new_access"

        assert refresher.await_count == 1
        assert member.expires_at >= int(time.time()) + 5 * 3600

    @pytest.mark.asyncio
    async def test_refresh_uses_expires_in(self, member):
        member.expires_at = 0
        refresher = AsyncMock(return_value={'access_token': 'new_access', 'expires_in': 7200})
        registry = MemberRegistry([member], token_refresher=refresher)

        await registry.get_valid_access_token(member)

        assert int(time.time()) + 7100 <= member.expires_at <= int(time.time()) + 7200

    @pytest.mark.asyncio
    async def test_refresh_failure_returns_none(self, member):
        """Test a failed refresh yields no credential"""
        member.expires_at = 0
        refresher = AsyncMock(side_effect=AuthenticationError("Invalid refresh token"))
        registry = MemberRegistry([member], token_refresher=refresher)

        assert await registry.get_valid_access_token(member) is None
        assert member.access_token == "test_access_token"

    @pytest.mark.asyncio
    async def test_no_refresher(self, member):
        """Test stale tokens without a refresher"""
        member.expires_at = 0
        registry = MemberRegistry([member])

        assert await registry.get_valid_access_token(member) is None
