"""
Configuration management for the Strava activity relay.

This module provides dataclass-based configuration management with validation
and environment variable loading.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .error_handling import ConfigurationError, ValidationError


@dataclass(frozen=True)
class MemberConfig:
    """Configuration for a single registered member."""
    name: str
    athlete_id: int
    access_token: str
    refresh_token: str
    expires_at: int
    discord_user_id: Optional[str] = None

    def validate(self) -> None:
        """Validate member configuration."""
        if not self.name or not self.name.strip():
            raise ConfigurationError("Member name is required", config_field="name")

        if self.athlete_id <= 0:
            raise ConfigurationError("Athlete ID must be positive", config_field="athlete_id")

        if not self.access_token or not self.access_token.strip():
            raise ConfigurationError("Access token is required", config_field="access_token")

        if not self.refresh_token or not self.refresh_token.strip():
            raise ConfigurationError("Refresh token is required", config_field="refresh_token")

        if self.expires_at < 0:
            raise ConfigurationError("Token expiration time cannot be negative", config_field="expires_at")


@dataclass(frozen=True)
class StravaConfig:
    """Strava application credentials."""
    client_id: str
    client_secret: str
    webhook_verify_token: str
    base_url: str = "https://www.strava.com/api/v3"
    token_url: str = "https://www.strava.com/oauth/token"

    def validate(self) -> None:
        """Validate Strava configuration."""
        if not self.client_id or not self.client_id.strip():
            raise ConfigurationError("Strava client ID is required", config_field="client_id")

        if not self.client_secret or not self.client_secret.strip():
            raise ConfigurationError("Strava client secret is required", config_field="client_secret")

        if not self.webhook_verify_token or not self.webhook_verify_token.strip():
            raise ConfigurationError("Webhook verify token is required", config_field="webhook_verify_token")


@dataclass(frozen=True)
class DiscordConfig:
    """Discord webhook configuration."""
    webhook_url: str
    username: str = "Strava Relay"

    def validate(self) -> None:
        """Validate Discord configuration."""
        if not self.webhook_url or not self.webhook_url.strip():
            raise ConfigurationError("Discord webhook URL is required", config_field="webhook_url")

        if not self.webhook_url.startswith("https://"):
            raise ConfigurationError("Discord webhook URL must use https", config_field="webhook_url")


@dataclass(frozen=True)
class RateWindowConfig:
    """One sliding window of the outbound call budget."""
    label: str
    limit: int
    window_seconds: float

    def validate(self) -> None:
        if self.limit <= 0:
            raise ConfigurationError(f"Rate limit for {self.label} window must be positive", config_field="limit")

        if self.window_seconds <= 0:
            raise ConfigurationError(f"Duration of {self.label} window must be positive", config_field="window_seconds")


@dataclass(frozen=True)
class PostingConfig:
    """Delay, budget and eligibility settings for the dispatch pipeline."""
    delay_minutes: float = 15
    short_window: RateWindowConfig = field(
        default_factory=lambda: RateWindowConfig("15 minutes", 80, 15 * 60)
    )
    daily_window: RateWindowConfig = field(
        default_factory=lambda: RateWindowConfig("24 hours", 900, 24 * 60 * 60)
    )
    spacing_seconds: float = 0.1
    dedup_max_size: int = 10000
    min_moving_time: int = 60  # seconds
    min_distance: float = 100  # meters
    max_age_hours: float = 24

    @property
    def delay_seconds(self) -> float:
        return self.delay_minutes * 60

    def validate(self) -> None:
        """Validate posting configuration."""
        if self.delay_minutes < 0:
            raise ConfigurationError("Posting delay cannot be negative", config_field="delay_minutes")

        for window in (self.short_window, self.daily_window):
            window.validate()

        if self.spacing_seconds < 0:
            raise ConfigurationError("Call spacing cannot be negative", config_field="spacing_seconds")

        if self.dedup_max_size <= 0:
            raise ConfigurationError("Dedup ledger size must be positive", config_field="dedup_max_size")


@dataclass(frozen=True)
class ServerConfig:
    """Webhook server bind settings."""
    host: str = "0.0.0.0"
    port: int = 5000

    def validate(self) -> None:
        if not (1 <= self.port <= 65535):
            raise ConfigurationError("Server port must be between 1 and 65535", config_field="port")


@dataclass(frozen=True)
class Config:
    """Main application configuration."""
    members: List[MemberConfig]
    strava: StravaConfig
    discord: DiscordConfig
    posting: PostingConfig = field(default_factory=PostingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def validate(self) -> None:
        """Validate entire configuration."""
        for i, member in enumerate(self.members):
            try:
                member.validate()
            except ConfigurationError as e:
                raise ConfigurationError(f"Member {i+1} validation failed: {e.message}", config_field=f"members[{i}].{e.config_field}")

        for name in ("strava", "discord", "posting", "server"):
            try:
                getattr(self, name).validate()
            except ConfigurationError as e:
                raise ConfigurationError(f"{name.title()} validation failed: {e.message}", config_field=f"{name}.{e.config_field}")

        athlete_ids = [member.athlete_id for member in self.members]
        if len(athlete_ids) != len(set(athlete_ids)):
            raise ConfigurationError("Duplicate athlete IDs found", config_field="members")

    def get_member_by_athlete_id(self, athlete_id: int) -> Optional[MemberConfig]:
        """Get member configuration by athlete ID."""
        if not isinstance(athlete_id, int) or athlete_id <= 0:
            raise ValidationError("Athlete ID must be a positive integer", field="athlete_id", value=athlete_id)

        for member in self.members:
            if member.athlete_id == athlete_id:
                return member
        return None

    @staticmethod
    def _members_from_env() -> List[MemberConfig]:
        """
        Load members listed in RELAY_MEMBERS.

        Each entry is an environment prefix, e.g. RELAY_MEMBERS=alice,bob reads
        ALICE_NAME, ALICE_ATHLETE_ID, ALICE_ACCESS_TOKEN, ALICE_REFRESH_TOKEN,
        ALICE_TOKEN_EXPIRES and optionally ALICE_DISCORD_USER_ID.
        """
        members = []
        prefixes = [p.strip().upper() for p in os.getenv('RELAY_MEMBERS', '').split(',') if p.strip()]

        for prefix in prefixes:
            required = ['NAME', 'ATHLETE_ID', 'ACCESS_TOKEN', 'REFRESH_TOKEN', 'TOKEN_EXPIRES']
            missing = [f'{prefix}_{key}' for key in required if not os.getenv(f'{prefix}_{key}')]
            if missing:
                raise ConfigurationError(
                    f"Incomplete member configuration for {prefix}: missing {', '.join(missing)}",
                    config_field=f"members.{prefix.lower()}"
                )

            try:
                members.append(MemberConfig(
                    name=os.getenv(f'{prefix}_NAME'),
                    athlete_id=int(os.getenv(f'{prefix}_ATHLETE_ID')),
                    access_token=os.getenv(f'{prefix}_ACCESS_TOKEN'),
                    refresh_token=os.getenv(f'{prefix}_REFRESH_TOKEN'),
                    expires_at=int(os.getenv(f'{prefix}_TOKEN_EXPIRES')),
                    discord_user_id=os.getenv(f'{prefix}_DISCORD_USER_ID')
                ))
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"Invalid {prefix} member configuration: {e}")

        return members

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> 'Config':
        """Create configuration from environment variables (and a .env file if present)."""
        load_dotenv(dotenv_path)

        try:
            members = cls._members_from_env()

            strava = StravaConfig(
                client_id=os.getenv('STRAVA_CLIENT_ID', ''),
                client_secret=os.getenv('STRAVA_CLIENT_SECRET', ''),
                webhook_verify_token=os.getenv('STRAVA_WEBHOOK_VERIFY_TOKEN', '')
            )

            discord = DiscordConfig(
                webhook_url=os.getenv('DISCORD_WEBHOOK_URL', ''),
                username=os.getenv('DISCORD_USERNAME', 'Strava Relay')
            )

            try:
                posting = PostingConfig(
                    delay_minutes=float(os.getenv('POSTING_DELAY_MINUTES', '15')),
                    short_window=RateWindowConfig(
                        label="15 minutes",
                        limit=int(os.getenv('RATE_LIMIT_SHORT_LIMIT', '80')),
                        window_seconds=float(os.getenv('RATE_LIMIT_SHORT_WINDOW_SECONDS', '900'))
                    ),
                    daily_window=RateWindowConfig(
                        label="24 hours",
                        limit=int(os.getenv('RATE_LIMIT_DAILY_LIMIT', '900')),
                        window_seconds=float(os.getenv('RATE_LIMIT_DAILY_WINDOW_SECONDS', '86400'))
                    ),
                    spacing_seconds=float(os.getenv('RATE_LIMIT_SPACING_SECONDS', '0.1')),
                    dedup_max_size=int(os.getenv('DEDUP_MAX_SIZE', '10000')),
                    min_moving_time=int(os.getenv('MIN_MOVING_TIME', '60')),
                    min_distance=float(os.getenv('MIN_DISTANCE', '100')),
                    max_age_hours=float(os.getenv('MAX_ACTIVITY_AGE_HOURS', '24'))
                )
                server = ServerConfig(
                    host=os.getenv('HOST', '0.0.0.0'),
                    port=int(os.getenv('PORT', '5000'))
                )
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"Invalid posting or server configuration: {e}")

            config = cls(members=members, strava=strava, discord=discord, posting=posting, server=server)
            config.validate()
            return config

        except Exception as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Error loading configuration from environment: {e}")
