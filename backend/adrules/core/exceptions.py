"""
Error types shared by the rules engine and its collaborators.

- ConfigurationError: a rule's trigger cannot be scheduled
- UpstreamError: the campaign data provider (or alert transport) failed
- PersistenceError: the rule store could not be read or written
"""

from typing import Optional


class AutomationError(Exception):
    """Base exception for the rules engine."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(AutomationError):
    """Malformed trigger: invalid cron expression or non-positive interval."""

    def __init__(self, message: str, rule_id: Optional[str] = None, details: dict = None):
        super().__init__(message, details)
        self.rule_id = rule_id


class UpstreamError(AutomationError):
    """Campaign data provider failure, including timeouts and bad payloads."""

    def __init__(self, message: str, platform: str = "meta", details: dict = None):
        super().__init__(message, details)
        self.platform = platform


class AuthenticationError(UpstreamError):
    """Access token is invalid or expired."""
    pass


class RateLimitError(UpstreamError):
    """Platform rate limit exceeded."""

    def __init__(self, message: str, platform: str = "meta", retry_after: int = 60):
        super().__init__(message, platform)
        self.retry_after = retry_after


class PersistenceError(AutomationError):
    """Rule store read or write failure."""
    pass
