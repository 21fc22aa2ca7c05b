from __future__ import annotations

from typing import Optional

from .models import ActuatorKind


class FarmwatchError(Exception):
    """Base for every recoverable error raised by the control core."""


class SensorUnavailable(FarmwatchError):
    """The sensor provider could not be reached or returned garbage."""


class ActuatorWriteFailed(FarmwatchError):
    def __init__(self, kind: ActuatorKind, value: object, reason: str) -> None:
        super().__init__(f"{kind.value} write {value!r} failed: {reason}")
        self.kind = kind
        self.value = value
        self.reason = reason


class ActuatorReadFailed(FarmwatchError):
    def __init__(self, kind: ActuatorKind, reason: str) -> None:
        super().__init__(f"{kind.value} read failed: {reason}")
        self.kind = kind
        self.reason = reason


class RecommendationUnavailable(FarmwatchError):
    """Model provider unreachable or timed out."""


class RecommendationInvalid(FarmwatchError):
    """Model answered, but the payload failed schema validation."""

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw


class LoopNotRunning(FarmwatchError):
    """Raised when an intent reaches a stopped or paused control loop."""
