"""
Configuration and fixtures for integration tests.

These fixtures wire the real pipeline components together (limiter, queue,
ledger, coordinator, clients) and only replace the HTTP sessions, so the
whole path from webhook event to Discord post runs as in production.
"""

from dataclasses import replace
from unittest.mock import Mock, AsyncMock, MagicMock

import pytest

from strava_relay.pipeline.service import ActivityPipeline
from strava_relay.utils.config import PostingConfig

# 0.12 seconds
SHORT_DELAY_MINUTES = 0.002


def http_response(status=200, json_data=None, headers=None):
    """aiohttp-like response usable as ``async with session.get(...)``."""
    response = Mock()
    response.status = status
    response.headers = headers or {}
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value="")

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=None)
    return context


@pytest.fixture
def make_http_response():
    return http_response


@pytest.fixture
def short_delay_config(app_config):
    """Application config with a sub-second delay and no call spacing."""
    return replace(app_config, posting=PostingConfig(delay_minutes=SHORT_DELAY_MINUTES, spacing_seconds=0))


@pytest.fixture
def wired_pipeline(short_delay_config):
    """Fully wired pipeline whose Strava and Discord sessions are mocks."""
    pipeline = ActivityPipeline.from_config(short_delay_config)
    pipeline.strava_client.session = Mock()
    pipeline.relay.session = Mock()
    pipeline.relay.session.post = Mock(side_effect=lambda *args, **kwargs: http_response(204))

    yield pipeline

    pipeline.shutdown()
