# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Weighted rule-based field classifier.

Every category in the pattern table accumulates a score for a field:

  * primary pattern hit  – label, placeholder, humanized name/id   (label_weight × strength)
  * secondary hit        – nearby free text only                    (context_weight × strength)
  * keyword hit          – whole token in name/id/autocomplete      (keyword_weight)
  * option hit           – select/radio option text                 (option_weight × strength)
  * kind hint            – input kind (type=email → email)          (kind_weight)

Jurisdiction overrides shift categories that already have a signal.  The
best category at or above ``min_score`` wins; ties go to the higher base
priority, then to table order.  Nothing here raises: a miss is the ``other``
category with low confidence.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from . import Category, FieldClassification, FieldDescriptor
from .config import ScoringWeights
from .field_patterns import PATTERNS, ClassificationPattern, overrides_for

_DEFAULT_WEIGHTS = ScoringWeights()

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATOR_RE = re.compile(r"[\s_\-.\[\]:/]+")
_DIGITS_RE = re.compile(r"\d+")


def humanize_identifier(value: str) -> str:
    """``businessName`` / ``business_name[0]`` → ``business name``."""
    if not value:
        return ""
    spaced = _CAMEL_RE.sub(" ", value)
    spaced = _SEPARATOR_RE.sub(" ", spaced)
    return _DIGITS_RE.sub(" ", spaced).strip().lower()


def _attribute_tokens(field: FieldDescriptor) -> frozenset[str]:
    tokens: set[str] = set()
    for raw in (field.name, field.element_id, field.autocomplete):
        words = humanize_identifier(raw).split()
        if not words:
            continue
        tokens.update(words)
        tokens.add("".join(words))
    return frozenset(tokens)


def _score_category(
    pattern: ClassificationPattern,
    field: FieldDescriptor,
    primary: tuple[str, ...],
    nearby: str,
    options: str,
    tokens: frozenset[str],
    weights: ScoringWeights,
) -> tuple[float, list[str]]:
    score = 0.0
    rules: list[str] = []

    for rule in pattern.patterns:
        if any(rule.regex.search(text) for text in primary):
            score += weights.label_weight * rule.strength
            rules.append(f"label:{rule.name}")
        elif nearby and rule.regex.search(nearby):
            score += weights.context_weight * rule.strength
            rules.append(f"context:{rule.name}")

    for keyword in pattern.keywords:
        if keyword in tokens:
            score += weights.keyword_weight
            rules.append(f"keyword:{keyword}")

    if options:
        for rule in pattern.option_patterns:
            if rule.regex.search(options):
                score += weights.option_weight * rule.strength
                rules.append(rule.name if rule.name.startswith("option:") else f"option:{rule.name}")

    base_kind = field.kind.removesuffix("_group")
    if base_kind in pattern.kinds:
        score += weights.kind_weight
        rules.append(f"kind:{base_kind}")

    return score, rules


def classify_field(
    field: FieldDescriptor,
    jurisdiction: str = "",
    *,
    weights: ScoringWeights | None = None,
    patterns: tuple[ClassificationPattern, ...] = PATTERNS,
    overrides: Mapping[Category, float] | None = None,
) -> FieldClassification:
    """Assign *field* to a category with a 0-100 confidence.

    Pure and deterministic: identical input always yields an identical result.
    """
    w = weights or _DEFAULT_WEIGHTS
    deltas = overrides if overrides is not None else overrides_for(jurisdiction)

    primary = tuple(
        t
        for t in (
            field.label.lower(),
            field.placeholder.lower(),
            humanize_identifier(field.name),
            humanize_identifier(field.element_id),
        )
        if t
    )
    nearby = " | ".join(field.nearby_text).lower()
    options = " | ".join(field.options).lower()
    tokens = _attribute_tokens(field)

    best: tuple[float, int, int] | None = None  # (score, priority, -index)
    best_pattern: ClassificationPattern | None = None
    best_rules: list[str] = []
    top_raw = 0.0

    for index, pattern in enumerate(patterns):
        score, rules = _score_category(pattern, field, primary, nearby, options, tokens, w)
        if score <= 0:
            continue
        delta = deltas.get(pattern.category, 0.0)
        if delta:
            score += delta
            rules.append(f"jurisdiction:{jurisdiction.upper()}{delta:+g}")
        top_raw = max(top_raw, score)
        key = (score, pattern.priority, -index)
        if best is None or key > best:
            best = key
            best_pattern = pattern
            best_rules = rules

    if best is None or best_pattern is None or best[0] < w.min_score:
        confidence = min(max(round(top_raw), 0), w.other_confidence)
        return FieldClassification(
            field=field,
            category=Category.OTHER,
            confidence=confidence,
            matched_rules=tuple(best_rules),
        )

    return FieldClassification(
        field=field,
        category=best_pattern.category,
        confidence=min(100, max(0, round(best[0]))),
        matched_rules=tuple(best_rules),
    )


def classify_fields(
    fields: Iterable[FieldDescriptor],
    jurisdiction: str = "",
    *,
    weights: ScoringWeights | None = None,
) -> tuple[FieldClassification, ...]:
    """Classify many fields with the same jurisdiction context."""
    overrides = overrides_for(jurisdiction)
    return tuple(classify_field(f, jurisdiction, weights=weights, overrides=overrides) for f in fields)
