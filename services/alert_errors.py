"""Common exception types for the alert engine."""

from __future__ import annotations


class AlertEngineError(RuntimeError):
    """Base class for alert engine failures."""


class TransientAlertError(AlertEngineError):
    """Raised when an occasion job failed for a recoverable reason (storage or broker unreachable)."""


class RecorderError(AlertEngineError):
    """Raised when the delivery ledger is used inconsistently, e.g. finalizing a terminal row."""


__all__ = [
    "AlertEngineError",
    "TransientAlertError",
    "RecorderError",
]
