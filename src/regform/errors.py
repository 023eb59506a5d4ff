# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""regform exception hierarchy.

All regform-specific errors inherit from RegFormError, allowing callers
to catch the base class for any failure or specific subclasses for
targeted handling.  Classification and section misses are never raised;
they are expressed as data (``other`` category, ungrouped section).
"""

from __future__ import annotations


class RegFormError(Exception):
    """Base exception for all regform errors."""


class ConfigError(RegFormError, ValueError):
    """Invalid configuration value (constructor or environment)."""


class SnapshotError(RegFormError):
    """Page snapshot capture or parsing failed."""


class TransportError(RegFormError):
    """Message transport failure."""


class TransientTransportError(TransportError):
    """Timeout or temporary disconnect; eligible for retry."""


class SendTimeoutError(TransientTransportError):
    """A single send exceeded its per-call timeout."""

    def __init__(self, message: str, *, timeout: float = 0.0) -> None:
        super().__init__(message)
        self.timeout = timeout


class PermanentTransportError(TransportError):
    """Transport reported an invalidated peer; never retried."""


class ChannelFailedError(TransportError):
    """Channel exhausted its reconnection budget and stopped retrying."""


class DetectionExhaustedError(RegFormError):
    """Repeated detection attempts failed past the retry bound."""

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class PageInstanceNotFoundError(RegFormError, KeyError):
    """No registered page instance for the given peer id."""


class ProtocolError(RegFormError, ValueError):
    """Malformed wire message, unknown kind, or incomplete handler map."""
