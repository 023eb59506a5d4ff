# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Immutable configuration for detection, sectioning and the messaging channel.

Scoring weights are per-deployment tuning knobs, so every constant the
classifier, section detector, orchestrator and channel use lives here.
``RegFormConfig.from_env()`` overlays ``REGFORM_*`` environment variables.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .errors import ConfigError


def _require(cond: bool, message: str) -> None:
    if not cond:
        raise ConfigError(message)


# ---------------------------------------------------------------------------
# Field classifier weights
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ScoringWeights:
    """Weights for the rule-based field classifier."""

    label_weight: float = 75.0  # pattern hit on label/name/placeholder
    context_weight: float = 20.0  # pattern hit on nearby free text only
    keyword_weight: float = 15.0  # keyword hit on name/id/autocomplete tokens
    option_weight: float = 60.0  # option-text hit (select / radio group)
    kind_weight: float = 30.0  # input kind hint (type=email -> email)
    min_score: float = 30.0
    other_confidence: int = 20

    def __post_init__(self) -> None:
        for name in ("label_weight", "context_weight", "keyword_weight", "option_weight", "kind_weight"):
            value = getattr(self, name)
            _require(value >= 0, f"{name} must be >= 0, got {value}")
        _require(self.label_weight > self.context_weight, "label_weight must exceed context_weight")
        _require(self.min_score > 0, f"min_score must be > 0, got {self.min_score}")
        _require(0 <= self.other_confidence <= 100, f"other_confidence must be 0..100, got {self.other_confidence}")


# ---------------------------------------------------------------------------
# Section detector
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SectionConfig:
    """Thresholds for visual section header detection."""

    prominence_threshold: int = 4
    min_fields: int = 2
    max_gap_px: float = 300.0
    checkbox_proximity_px: float = 60.0
    min_header_len: int = 3
    max_header_len: int = 100

    def __post_init__(self) -> None:
        _require(self.prominence_threshold > 0, f"prominence_threshold must be > 0, got {self.prominence_threshold}")
        _require(self.min_fields >= 1, f"min_fields must be >= 1, got {self.min_fields}")
        _require(self.max_gap_px > 0, f"max_gap_px must be > 0, got {self.max_gap_px}")
        _require(self.checkbox_proximity_px >= 0, "checkbox_proximity_px must be >= 0")
        _require(0 < self.min_header_len <= self.max_header_len, "header length bounds are inverted")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DetectionConfig:
    """Overall scoring and debounce behaviour of the detection orchestrator."""

    settle_delay: float = 1.5
    prior_weight: float = 0.3
    min_form_fields: int = 3
    max_detection_attempts: int = 3
    attempt_retry_delay: float = 0.5
    progressive_updates: bool = True

    def __post_init__(self) -> None:
        _require(self.settle_delay >= 0, f"settle_delay must be >= 0, got {self.settle_delay}")
        _require(0.0 <= self.prior_weight <= 1.0, f"prior_weight must be 0..1, got {self.prior_weight}")
        _require(self.min_form_fields >= 1, f"min_form_fields must be >= 1, got {self.min_form_fields}")
        _require(self.max_detection_attempts >= 1, "max_detection_attempts must be >= 1")
        _require(self.attempt_retry_delay >= 0, "attempt_retry_delay must be >= 0")


# ---------------------------------------------------------------------------
# Messaging channel
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ChannelConfig:
    """Connection health, reconnection, queue and cache limits."""

    ping_interval: float = 5.0
    ping_timeout: float = 1.0
    max_missed_pings: int = 3
    backoff_base: float = 0.5
    backoff_factor: float = 2.0
    backoff_max: float = 10.0
    max_retries: int = 5
    send_timeout: float = 5.0
    queue_capacity: int = 100
    queue_ttl: float = 30.0
    cache_ttl: float = 300.0
    max_fatal_notifications: int = 3

    def __post_init__(self) -> None:
        _require(self.ping_interval > 0, f"ping_interval must be > 0, got {self.ping_interval}")
        _require(self.ping_timeout > 0, f"ping_timeout must be > 0, got {self.ping_timeout}")
        _require(self.max_missed_pings >= 1, "max_missed_pings must be >= 1")
        _require(self.backoff_base > 0, f"backoff_base must be > 0, got {self.backoff_base}")
        _require(self.backoff_factor >= 1, f"backoff_factor must be >= 1, got {self.backoff_factor}")
        _require(self.backoff_max >= self.backoff_base, "backoff_max must be >= backoff_base")
        _require(self.max_retries >= 1, f"max_retries must be >= 1, got {self.max_retries}")
        _require(self.send_timeout > 0, f"send_timeout must be > 0, got {self.send_timeout}")
        _require(self.queue_capacity >= 1, f"queue_capacity must be >= 1, got {self.queue_capacity}")
        _require(self.queue_ttl > 0, f"queue_ttl must be > 0, got {self.queue_ttl}")
        _require(self.cache_ttl > 0, f"cache_ttl must be > 0, got {self.cache_ttl}")
        _require(self.max_fatal_notifications >= 0, "max_fatal_notifications must be >= 0")

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnection *attempt* (0-based), capped at ``backoff_max``."""
        return min(self.backoff_base * (self.backoff_factor**attempt), self.backoff_max)


# ---------------------------------------------------------------------------
# Bundle + environment overlay
# ---------------------------------------------------------------------------

# env var -> (section attribute, field name, converter)
_ENV_FIELDS: dict[str, tuple[str, str, type]] = {
    "REGFORM_SETTLE_DELAY": ("detection", "settle_delay", float),
    "REGFORM_PRIOR_WEIGHT": ("detection", "prior_weight", float),
    "REGFORM_MAX_DETECTION_ATTEMPTS": ("detection", "max_detection_attempts", int),
    "REGFORM_PING_INTERVAL": ("channel", "ping_interval", float),
    "REGFORM_SEND_TIMEOUT": ("channel", "send_timeout", float),
    "REGFORM_MAX_RETRIES": ("channel", "max_retries", int),
    "REGFORM_QUEUE_TTL": ("channel", "queue_ttl", float),
    "REGFORM_CACHE_TTL": ("channel", "cache_ttl", float),
    "REGFORM_MIN_SCORE": ("weights", "min_score", float),
    "REGFORM_HEADER_MAX_GAP_PX": ("sections", "max_gap_px", float),
}


@dataclass(frozen=True, slots=True)
class RegFormConfig:
    """All tunables in one immutable bundle."""

    weights: ScoringWeights = field(default_factory=ScoringWeights)
    sections: SectionConfig = field(default_factory=SectionConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    channel: ChannelConfig = field(default_factory=ChannelConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RegFormConfig:
        """Build a config from defaults overlaid with ``REGFORM_*`` variables."""
        env = os.environ if environ is None else environ
        overrides: dict[str, dict[str, object]] = {}
        for var, (section, name, conv) in _ENV_FIELDS.items():
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            try:
                value = conv(raw)
            except ValueError:
                raise ConfigError(f"{var}={raw!r} is not a valid {conv.__name__}") from None
            overrides.setdefault(section, {})[name] = value

        base = cls()
        return cls(
            weights=dataclasses.replace(base.weights, **overrides.get("weights", {})),
            sections=dataclasses.replace(base.sections, **overrides.get("sections", {})),
            detection=dataclasses.replace(base.detection, **overrides.get("detection", {})),
            channel=dataclasses.replace(base.channel, **overrides.get("channel", {})),
            log_level=env.get("REGFORM_LOG_LEVEL", base.log_level) or base.log_level,
        )
