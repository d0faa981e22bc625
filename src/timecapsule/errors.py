"""Exceptions raised by the release engine."""


class ReleaseError(Exception):
    """Base exception for release engine errors."""


class InvalidTimeError(ReleaseError):
    """Raised when a local date, time or time zone cannot be converted."""


class StoreError(ReleaseError):
    """Raised when deliverable state cannot be read or written."""


class ValidationError(ReleaseError):
    """Raised when model validation fails."""
