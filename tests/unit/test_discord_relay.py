"""
Unit tests for the Discord relay.
"""

import pytest
from unittest.mock import Mock, AsyncMock, MagicMock, patch
import aiohttp

from strava_relay.api.models import StravaActivity
from strava_relay.notifications.discord_relay import (
    DiscordRelay, STRAVA_ORANGE, format_activity_embed, format_distance,
    format_duration, format_elevation, format_pace
)
from strava_relay.utils.config import DiscordConfig
from strava_relay.utils.error_handling import RelayError


def mock_post_response(status=204, text=""):
    response = Mock()
    response.status = status
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=None)
    return context


class TestFormatting:
    """Test the formatting helpers"""

    def test_format_distance(self):
        assert format_distance(8000.0) == "8.00 km"
        assert format_distance(1234.5) == "1.23 km"
        assert format_distance(None) == "0.00 km"

    def test_format_duration(self):
        assert format_duration(2400) == "40:00"
        assert format_duration(3725) == "1:02:05"
        assert format_duration(0) == "0:00"

    def test_format_pace(self):
        assert format_pace(5.0) == "5:00/km"
        assert format_pace(4.5) == "4:30/km"
        assert format_pace(None) is None

    def test_format_elevation(self):
        assert format_elevation(1234.7) == "1,234 m"
        assert format_elevation(None) == "0 m"


class TestFormatActivityEmbed:
    """Test format_activity_embed function"""

    def test_run_embed(self, strava_activity, member):
        """Test the embed for a run"""
        embed = format_activity_embed(strava_activity, member)

        assert embed['title'] == "Morning Run"
        assert embed['url'] == "https://www.strava.com/activities/987654321"
        assert embed['color'] == STRAVA_ORANGE
        assert embed['author'] == {'name': "Test Athlete"}
        assert embed['description'] == "Easy loop around the park"
        assert embed['footer'] == {'text': "Run"}
        assert 'timestamp' in embed

        fields = {field['name']: field['value'] for field in embed['fields']}
        assert fields['Distance'] == "8.00 km"
        assert fields['Moving Time'] == "40:00"
        assert fields['Pace'] == "5:00/km"
        assert 'GAP' in fields
        assert fields['Elevation'] == "80 m"
        assert fields['Avg HR'] == "152 bpm"

    def test_ride_embed_uses_speed(self, make_activity_data, member):
        """Test rides show speed instead of pace"""
        ride = StravaActivity.from_strava_api(make_activity_data(
            type="Ride", sport_type="Ride", average_speed=8.0, average_heartrate=None, total_elevation_gain=0
        ))

        fields = {field['name']: field['value'] for field in format_activity_embed(ride, member)['fields']}

        assert fields['Avg Speed'] == "28.8 km/h"
        assert 'Pace' not in fields
        assert 'GAP' not in fields
        assert 'Elevation' not in fields
        assert 'Avg HR' not in fields

    def test_embed_without_description(self, make_activity_data, member):
        """Test optional fields are omitted"""
        activity = StravaActivity.from_strava_api(make_activity_data(description=None, start_date=None))

        embed = format_activity_embed(activity, member)

        assert 'description' not in embed
        assert 'timestamp' not in embed


class TestDiscordRelay:
    """Test DiscordRelay class"""

    def setup_method(self):
        """Set up test fixtures"""
        self.config = DiscordConfig(webhook_url="https://discord.com/api/webhooks/1/test", username="Club Bot")
        self.relay = DiscordRelay(self.config)
        self.session = Mock()
        self.relay.session = self.session

    @pytest.mark.asyncio
    async def test_context_manager(self):
        """Test DiscordRelay as async context manager"""
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session = AsyncMock()
            mock_session_class.return_value = mock_session

            async with DiscordRelay(self.config) as relay:
                assert relay.session == mock_session

            mock_session.close.assert_called_once()

    def test_build_payload_with_mention(self, strava_activity, member):
        """Test members with a linked Discord account are mentioned"""
        payload = self.relay.build_payload(strava_activity, member)

        assert payload['username'] == "Club Bot"
        assert payload['content'] == "New activity from <@555000111>"
        assert payload['allowed_mentions'] == {'users': ["555000111"]}
        assert len(payload['embeds']) == 1

    def test_build_payload_without_mention(self, strava_activity, member):
        """Test no pings for members without a Discord account"""
        member.discord_user_id = None

        payload = self.relay.build_payload(strava_activity, member)

        assert 'content' not in payload
        assert payload['allowed_mentions'] == {'parse': []}

    @pytest.mark.asyncio
    async def test_post_activity(self, strava_activity, member):
        """Test posting to the webhook"""
        self.session.post = Mock(return_value=mock_post_response(204))

        await self.relay.post_activity(strava_activity, member)

        assert self.session.post.call_args[0][0] == "https://discord.com/api/webhooks/1/test"
        assert self.session.post.call_args.kwargs['json']['embeds'][0]['title'] == "Morning Run"
        assert self.relay.posted_count == 1

    @pytest.mark.asyncio
    async def test_post_activity_rejected(self, strava_activity, member):
        """Test non-2xx responses raise RelayError"""
        self.session.post = Mock(return_value=mock_post_response(400, '{"message": "Invalid Form Body"}'))

        with pytest.raises(RelayError) as exc_info:
            await self.relay.post_activity(strava_activity, member)

        assert exc_info.value.status_code == 400
        assert self.relay.posted_count == 0

    @pytest.mark.asyncio
    async def test_post_activity_transport_error(self, strava_activity, member):
        """Test transport errors are wrapped"""
        self.session.post = Mock(side_effect=aiohttp.ClientConnectionError("unreachable"))

        with pytest.raises(RelayError):
            await self.relay.post_activity(strava_activity, member)

    @pytest.mark.asyncio
    async def test_post_without_session(self, strava_activity, member):
        """Test posting before the session is opened"""
        with pytest.raises(RelayError, match="not initialized"):
            await DiscordRelay(self.config).post_activity(strava_activity, member)
