"""
Error taxonomy for the alert engine.

None of these are fatal: fetch failures are retried on the next poll tick,
audio failures fall through to the next sound tier, and malformed push fields
are replaced with sentinels before they reach the store.
"""
from typing import Optional


class AlertEngineError(Exception):
    """Base exception for all alert engine errors."""


class FetchError(AlertEngineError):
    """A backend request failed (transport error, HTTP error or bad envelope)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AudioError(AlertEngineError):
    """A single sound source could not be played."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class MalformedPayloadError(AlertEngineError):
    """A push payload field could not be converted."""

    def __init__(self, field: str, value):
        super().__init__(f"Malformed value for '{field}': {value!r}")
        self.field = field
        self.value = value
