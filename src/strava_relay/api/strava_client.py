"""
Strava API client with shared rate limiting and async support.

This module provides an async HTTP client for the Strava API. Every request
is submitted through the process-wide SlidingWindowRateLimiter so that all
members together stay within the application's call budget.
"""

import asyncio
import functools
from typing import List, Optional, Dict, Any

import aiohttp

from .models import StravaActivity
from ..pipeline.rate_limiter import SlidingWindowRateLimiter
from ..utils.config import StravaConfig
from ..utils.logging_config import get_logger, PerformanceTimer
from ..utils.error_handling import (
    APIError, RateLimitError, AuthenticationError, ValidationError, create_error_context
)

logger = get_logger(__name__)


class StravaAPIClient:
    """
    Async Strava API client.

    Use as an async context manager so the underlying aiohttp session is
    opened and closed with the client.
    """

    def __init__(self, strava_config: StravaConfig, rate_limiter: SlidingWindowRateLimiter, timeout: float = 30):
        """
        Initialize the Strava API client.

        Args:
            strava_config: Strava application credentials and endpoints
            rate_limiter: Limiter every request is submitted through
            timeout: Total timeout per HTTP request in seconds
        """
        self.config = strava_config
        self.base_url = strava_config.base_url
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> 'StravaAPIClient':
        """Async context manager entry."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def open(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    def _get_headers(self, access_token: str) -> Dict[str, str]:
        """Get headers for API requests."""
        return {
            'Authorization': f'Bearer {access_token}',
            'Accept': 'application/json'
        }

    async def _make_request(
        self,
        endpoint: str,
        access_token: str,
        params: Optional[Dict[str, Any]] = None
    ) -> Optional[Any]:
        """
        Make a GET request to the Strava API.

        Args:
            endpoint: API endpoint (e.g., '/activities/123')
            access_token: Member's bearer token
            params: Query parameters

        Returns:
            JSON response data, or None if the resource does not exist
        """
        if not self.session:
            raise APIError("Client session not initialized. Use async context manager.", endpoint=endpoint)

        url = f"{self.base_url}{endpoint}"

        try:
            async with self.session.get(url, headers=self._get_headers(access_token), params=params) as response:
                return await self._handle_response(response, endpoint)
        except asyncio.TimeoutError as e:
            raise APIError(f"Request timed out for GET {endpoint}", endpoint=endpoint, original_error=e)
        except aiohttp.ClientError as e:
            raise APIError(f"Request failed for GET {endpoint}: {e}", endpoint=endpoint, original_error=e)

    async def _handle_response(self, response: aiohttp.ClientResponse, endpoint: str) -> Optional[Any]:
        """
        Map an API response to data or an exception.

        Args:
            response: aiohttp response object
            endpoint: Endpoint for error context

        Returns:
            JSON response data or None for 404
        """
        if response.status in (200, 201):
            return await response.json()
        elif response.status == 401:
            raise AuthenticationError("Authentication failed - invalid or expired token")
        elif response.status == 403:
            raise APIError("Access forbidden - insufficient permissions", status_code=403, endpoint=endpoint)
        elif response.status == 404:
            logger.warning(f"Resource not found: {endpoint}")
            return None
        elif response.status == 429:
            retry_after = response.headers.get('Retry-After')
            logger.warning("Rate limited by Strava API despite local budgeting")
            raise RateLimitError(
                "API rate limit exceeded",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else 900
            )
        else:
            raise APIError(f"HTTP error {response.status}", status_code=response.status, endpoint=endpoint)

    async def get_activity(self, activity_id: int, access_token: str) -> Optional[StravaActivity]:
        """
        Fetch detailed activity data by ID.

        Args:
            activity_id: Strava activity ID
            access_token: Owner's valid access token

        Returns:
            Parsed StravaActivity or None if not found
        """
        endpoint = f'/activities/{activity_id}'

        with PerformanceTimer(f"Fetch activity {activity_id}"):
            data = await self.rate_limiter.submit(
                functools.partial(self._make_request, endpoint, access_token),
                context=create_error_context("get_activity", "strava_client", {'activity_id': activity_id})
            )

        if not data:
            return None

        try:
            return StravaActivity.from_strava_api(data)
        except (ValidationError, ValueError, TypeError) as e:
            raise APIError(f"Malformed activity {activity_id}: {e}", endpoint=endpoint, original_error=e)

    async def get_athlete_activities(
        self,
        access_token: str,
        page: int = 1,
        per_page: int = 30,
        before: Optional[int] = None,
        after: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        List the authenticated athlete's activities (summary representation).

        Args:
            access_token: Member's valid access token
            page: Page number
            per_page: Number of activities per page (max 200)
            before: Unix timestamp to get activities before
            after: Unix timestamp to get activities after

        Returns:
            List of summary activity dicts (empty if none)
        """
        params = {
            'per_page': min(per_page, 200),  # Strava max is 200
            'page': page
        }

        if before:
            params['before'] = before
        if after:
            params['after'] = after

        activities = await self.rate_limiter.submit(
            functools.partial(self._make_request, '/athlete/activities', access_token, params),
            context=create_error_context("get_athlete_activities", "strava_client", {'page': page, 'per_page': per_page})
        )
        return activities or []

    async def _post_token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        if not self.session:
            raise APIError("Client session not initialized", endpoint=self.config.token_url)

        try:
            async with self.session.post(self.config.token_url, data=data) as response:
                if response.status == 200:
                    return await response.json()
                elif response.status in (400, 401):
                    raise AuthenticationError("Invalid refresh token or client credentials")
                else:
                    raise APIError(
                        f"Token refresh failed with status {response.status}",
                        status_code=response.status,
                        endpoint=self.config.token_url
                    )
        except asyncio.TimeoutError as e:
            raise APIError("Token refresh timed out", endpoint=self.config.token_url, original_error=e)
        except aiohttp.ClientError as e:
            raise APIError(f"Error refreshing token: {e}", endpoint=self.config.token_url, original_error=e)

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new access token.

        Args:
            refresh_token: Member's current refresh token

        Returns:
            Token data with access_token, refresh_token and expires_at
        """
        data = {
            'client_id': self.config.client_id,
            'client_secret': self.config.client_secret,
            'refresh_token': refresh_token,
            'grant_type': 'refresh_token'
        }

        token_data = await self.rate_limiter.submit(
            functools.partial(self._post_token_request, data),
            context=create_error_context("refresh_access_token", "strava_client")
        )

        if not isinstance(token_data, dict) or not token_data.get('access_token'):
            raise APIError("Token refresh response did not contain an access token", endpoint=self.config.token_url)

        return token_data
