"""
Security utilities for the webhook boundary.

Input validation for inbound Strava events, constant-time token comparison
and the response headers attached by the webhook server.
"""

import re
import secrets
from typing import Any, Dict

from .logging_config import get_logger
from .error_handling import ValidationError

logger = get_logger(__name__)


class SecurityValidator:
    """
    Security validation utilities for input sanitization and validation.
    """

    ID_PATTERN = re.compile(r'^\d{1,19}$')

    @classmethod
    def validate_athlete_id(cls, athlete_id: int) -> bool:
        """
        Validate athlete ID format and range.

        Args:
            athlete_id: Athlete ID to validate

        Returns:
            True if valid, False otherwise
        """
        if not isinstance(athlete_id, int) or isinstance(athlete_id, bool):
            return False
        return 1 <= athlete_id <= 999999999999999

    @classmethod
    def parse_id(cls, value: Any, field: str) -> int:
        """
        Coerce a webhook identifier (int or digit string) to a positive int.

        Raises:
            ValidationError: If the value is not a positive integer id
        """
        if isinstance(value, bool):
            raise ValidationError(f"Invalid {field}", field=field, value=value)
        if isinstance(value, int):
            parsed = value
        elif isinstance(value, str) and cls.ID_PATTERN.match(value.strip()):
            parsed = int(value.strip())
        else:
            raise ValidationError(f"Invalid {field}", field=field, value=value)

        if parsed <= 0:
            raise ValidationError(f"{field} must be positive", field=field, value=value)
        return parsed

    @classmethod
    def sanitize_string(cls, value: str, max_length: int = 255) -> str:
        """
        Sanitize string input by removing potentially dangerous characters.

        Args:
            value: String to sanitize
            max_length: Maximum allowed length

        Returns:
            Sanitized string
        """
        if not isinstance(value, str):
            raise ValidationError("Value must be a string")

        # Remove null bytes and control characters
        sanitized = ''.join(char for char in value if ord(char) >= 32 or char in '\t\n\r')

        if len(sanitized) > max_length:
            sanitized = sanitized[:max_length]
            logger.warning(f"String truncated to {max_length} characters")

        return sanitized.strip()

    @classmethod
    def verify_token(cls, provided: str, expected: str) -> bool:
        """Compare a provided verify token against the configured one."""
        if not provided or not expected:
            return False
        return secrets.compare_digest(provided.encode('utf-8'), expected.encode('utf-8'))


def mask_secret(secret: str, visible_chars: int = 4) -> str:
    """Mask a secret for display, keeping the last few characters."""
    if not secret:
        return ""
    if len(secret) <= visible_chars:
        return "*" * len(secret)
    return "*" * (len(secret) - visible_chars) + secret[-visible_chars:]


def create_security_headers() -> Dict[str, str]:
    """
    Create security headers for HTTP responses.

    Returns:
        Dictionary of security headers
    """
    return {
        'X-Content-Type-Options': 'nosniff',
        'X-Frame-Options': 'DENY',
        'X-XSS-Protection': '1; mode=block',
        'Strict-Transport-Security': 'max-age=31536000; includeSubDomains',
        'Content-Security-Policy': "default-src 'self'",
        'Referrer-Policy': 'strict-origin-when-cross-origin'
    }
