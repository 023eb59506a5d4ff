# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""One detection pass: snapshot → ``DetectionResult``.

Composes jurisdiction analysis, field extraction, classification and section
detection, then folds the URL prior and the field evidence into one overall
confidence::

    field_component = mean(non-other confidences) × min(1, classified / min_form_fields)
    confidence      = round(prior_weight × prior + (1 − prior_weight) × field_component)

A page without any field entries scores 0; that is a valid "no form" result,
not an error.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from . import Category, DetectionResult, FieldClassification
from .config import DetectionConfig, RegFormConfig
from .field_classifier import classify_fields
from .field_extractor import collect_field_entries
from .jurisdiction import analyze_url
from .pipeline_timer import PipelineTimer
from .section_detector import detect_sections
from .snapshot import PageSnapshot

logger = logging.getLogger(__name__)

LOW_CONFIDENCE = 60


def field_component(classifications: Iterable[FieldClassification], min_form_fields: int) -> float:
    classified = [c.confidence for c in classifications if c.category is not Category.OTHER]
    if not classified:
        return 0.0
    mean = sum(classified) / len(classified)
    return mean * min(1.0, len(classified) / min_form_fields)


def compute_confidence(
    prior: int,
    classifications: Iterable[FieldClassification],
    config: DetectionConfig,
) -> int:
    """Overall 0-100 confidence; 0 when there are no field entries at all."""
    items = tuple(classifications)
    if not items:
        return 0
    component = field_component(items, config.min_form_fields)
    score = config.prior_weight * prior + (1.0 - config.prior_weight) * component
    return max(0, min(100, round(score)))


def run_detection(
    snapshot: PageSnapshot,
    *,
    page_instance_id: str,
    generation: int,
    config: RegFormConfig | None = None,
    clock: Callable[[], float] = time.time,
) -> DetectionResult:
    """Run every stage on *snapshot*. Pure apart from the timestamp."""
    cfg = config or RegFormConfig()
    timer = PipelineTimer()
    try:
        with timer.track("jurisdiction"):
            match = analyze_url(snapshot.url)
        with timer.track("fields"):
            entries = collect_field_entries(snapshot, checkbox_proximity_px=cfg.sections.checkbox_proximity_px)
        with timer.track("classify"):
            classifications = classify_fields(entries, match.code, weights=cfg.weights)
        with timer.track("sections"):
            sections = detect_sections(snapshot, classifications, cfg.sections)
        with timer.track("scoring"):
            confidence = compute_confidence(match.prior, classifications, cfg.detection)
    except Exception:
        logger.warning("Detection pass failed: %s", timer.failure_report())
        raise

    result = DetectionResult(
        page_instance_id=page_instance_id,
        url=snapshot.url,
        jurisdiction=match.code,
        jurisdiction_prior=match.prior,
        confidence=confidence,
        sections=sections,
        field_count=len(classifications),
        timestamp=clock(),
        generation=generation,
        stage_ms=timer.elapsed_per_stage(),
    )
    logger.debug("Detection pass done: %s stages=%s", result, result.stage_ms)
    return result


# ---------------------------------------------------------------------------
# Readiness summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DetectionSummary:
    """Counts a presentation surface shows next to a result."""

    total_fields: int
    classified: int
    unclassified: int
    low_confidence: int
    section_count: int
    by_category: dict[str, int] = field(default_factory=dict)
    ready: bool = False


def summarize(
    result: DetectionResult,
    *,
    low_confidence: int = LOW_CONFIDENCE,
    min_form_fields: int = DetectionConfig().min_form_fields,
) -> DetectionSummary:
    counts: Counter[str] = Counter()
    classified = unclassified = low = 0
    for item in result.iter_fields():
        if item.category is Category.OTHER:
            unclassified += 1
            continue
        classified += 1
        counts[item.category.value] += 1
        if item.confidence < low_confidence:
            low += 1
    return DetectionSummary(
        total_fields=result.field_count,
        classified=classified,
        unclassified=unclassified,
        low_confidence=low,
        section_count=sum(1 for s in result.sections if not s.is_ungrouped),
        by_category=dict(sorted(counts.items())),
        ready=result.is_form_detected and classified >= min_form_fields,
    )
