"""
Shared fixtures for unit and integration tests.
"""

import time
from datetime import datetime, timedelta, timezone

import pytest

from strava_relay.api.models import StravaActivity
from strava_relay.members.registry import Member
from strava_relay.utils.config import (
    Config, DiscordConfig, MemberConfig, PostingConfig, StravaConfig
)


def activity_payload(activity_id: int = 987654321, athlete_id: int = 12345, hours_ago: float = 1, **overrides):
    """Detailed activity as returned by GET /activities/{id}."""
    start = datetime.now(timezone.utc) - timedelta(hours=hours_ago)
    data = {
        "id": activity_id,
        "athlete": {"id": athlete_id},
        "name": "Morning Run",
        "description": "Easy loop around the park",
        "type": "Run",
        "sport_type": "Run",
        "private": False,
        "visibility": "everyone",
        "hide_from_home": False,
        "flagged": False,
        "start_date": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "start_date_local": start.strftime("%Y-%m-%dT%H:%M:%S"),
        "timezone": "(GMT+00:00) Europe/London",
        "distance": 8000.0,
        "moving_time": 2400,
        "elapsed_time": 2500,
        "total_elevation_gain": 80.0,
        "average_speed": 3.33,
        "max_speed": 5.0,
        "average_heartrate": 152.0,
        "max_heartrate": 171.0,
        "elev_high": 120.0,
        "elev_low": 40.0,
        "map": {"summary_polyline": "abc123"},
        "start_latlng": [51.5, -0.12],
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_activity_data():
    """Factory for raw activity data with overrides."""
    return activity_payload


@pytest.fixture
def recent_activity_data():
    """Raw API data for a public run that started an hour ago."""
    return activity_payload()


@pytest.fixture
def strava_activity(recent_activity_data):
    """Parsed public run that started an hour ago."""
    return StravaActivity.from_strava_api(recent_activity_data)


@pytest.fixture
def member():
    """Registered member with a token valid for six hours."""
    return Member(
        athlete_id=12345,
        name="Test Athlete",
        access_token="test_access_token",
        refresh_token="test_refresh_token",
        expires_at=int(time.time()) + 6 * 3600,
        discord_user_id="555000111"
    )


@pytest.fixture
def app_config():
    """Complete, valid application configuration."""
    return Config(
        members=[
            MemberConfig(
                name="Test Athlete",
                athlete_id=12345,
                access_token="test_access_token",
                refresh_token="test_refresh_token",
                expires_at=int(time.time()) + 6 * 3600,
                discord_user_id="555000111"
            )
        ],
        strava=StravaConfig(
            client_id="12345",
            client_secret="test_client_secret",
            webhook_verify_token="test_verify_token"
        ),
        discord=DiscordConfig(webhook_url="https://discord.com/api/webhooks/1/test"),
        posting=PostingConfig(delay_minutes=15)
    )
