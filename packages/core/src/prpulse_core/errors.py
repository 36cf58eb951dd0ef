from __future__ import annotations


class PrpulseError(Exception):
    """Base class for prpulse errors."""


class ConfigError(PrpulseError, ValueError):
    """The configuration is incomplete or malformed."""


class AuthError(PrpulseError):
    """The GitHub credentials cannot access the configured repository."""


class UpstreamError(PrpulseError):
    """A GitHub request failed, after retries where the failure was transient."""
