# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Category pattern registry for the field classifier.

Each ``ClassificationPattern`` lists ordered regexes (with a relative
strength multiplier), attribute keywords, option-text patterns and input-kind
hints for one ``Category``.  ``JURISDICTION_OVERRIDES`` holds per-jurisdiction
weight deltas for portals that label fields unusually.

The table is built once at import time and is read-only afterwards.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType

from . import Category

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PatternRule:
    """One regex with a relative strength (1.0 = normal)."""

    name: str
    regex: re.Pattern[str]
    strength: float = 1.0


@dataclass(frozen=True, slots=True)
class ClassificationPattern:
    """Rules that vote for a single category."""

    category: Category
    priority: int  # tie-breaker, higher wins
    patterns: tuple[PatternRule, ...]
    keywords: tuple[str, ...] = ()  # matched as whole tokens in name/id/autocomplete
    option_patterns: tuple[PatternRule, ...] = ()  # matched against select/radio option text
    kinds: tuple[str, ...] = ()  # input kinds that hint at this category


def _p(pattern: str, strength: float = 1.0, name: str | None = None) -> PatternRule:
    return PatternRule(
        name=name or pattern,
        regex=re.compile(pattern, re.IGNORECASE),
        strength=strength,
    )


_US_STATES = (
    "alabama|alaska|arizona|arkansas|california|colorado|connecticut|delaware|florida|georgia|hawaii|idaho|"
    "illinois|indiana|iowa|kansas|kentucky|louisiana|maine|maryland|massachusetts|michigan|minnesota|"
    "mississippi|missouri|montana|nebraska|nevada|new hampshire|new jersey|new mexico|new york|"
    "north carolina|north dakota|ohio|oklahoma|oregon|pennsylvania|rhode island|south carolina|"
    "south dakota|tennessee|texas|utah|vermont|virginia|washington|west virginia|wisconsin|wyoming|"
    "district of columbia"
)

# ---------------------------------------------------------------------------
# Pattern table (order = final tie-breaker)
# ---------------------------------------------------------------------------

PATTERNS: tuple[ClassificationPattern, ...] = (
    ClassificationPattern(
        category=Category.EIN,
        priority=95,
        patterns=(
            _p(r"employer\s*identification\s*(number|no\.?|#)?", 1.15),
            _p(r"\bf?ein\b", 1.15),
            _p(r"federal\s*(employer\s*)?(tax\s*)?id(entification)?", 1.15),
            _p(r"\btax\s*id(entification)?\s*(number|no\.?|#)?\b", 1.1),
            _p(r"\bfederal\s*id\b", 1.0),
        ),
        keywords=("ein", "fein", "taxid", "feinnumber", "einnumber"),
    ),
    ClassificationPattern(
        category=Category.SSN,
        priority=95,
        patterns=(
            _p(r"social\s*security(\s*(number|no\.?|#))?", 1.15),
            _p(r"\bssn\b", 1.15),
            _p(r"\bitin\b", 1.0),
        ),
        keywords=("ssn", "socialsecurity", "itin"),
    ),
    ClassificationPattern(
        category=Category.BUSINESS_NAME,
        priority=90,
        patterns=(
            _p(r"business\s*name"),
            _p(r"company\s*name"),
            _p(r"entity\s*name"),
            _p(r"organi[sz]ation\s*name"),
            _p(r"legal\s*(entity\s*|business\s*)?name"),
            _p(r"corporate\s*name"),
            _p(r"firm\s*name"),
            _p(r"name\s*of\s*(the\s*)?(business|company|entity|corporation|llc)"),
        ),
        keywords=("businessname", "companyname", "entityname", "orgname", "legalname", "company"),
    ),
    ClassificationPattern(
        category=Category.DBA,
        priority=85,
        patterns=(
            _p(r"\bd\.?b\.?a\b"),
            _p(r"doing\s*business\s*as"),
            _p(r"trade\s*name"),
            _p(r"fictitious\s*(business\s*)?name"),
            _p(r"assumed\s*name"),
        ),
        keywords=("dba", "tradename", "fictitiousname"),
    ),
    ClassificationPattern(
        category=Category.ENTITY_TYPE,
        priority=85,
        patterns=(
            _p(r"entity\s*type"),
            _p(r"business\s*(type|structure)"),
            _p(r"organi[sz]ation\s*type"),
            _p(r"type\s*of\s*(entity|business|organi[sz]ation)"),
            _p(r"(legal|corporate)\s*structure"),
            _p(r"form\s*of\s*business"),
        ),
        keywords=("entitytype", "businesstype", "orgtype", "structure"),
        option_patterns=(
            _p(r"\bllc\b|limited\s*liability", name="option:llc"),
            _p(r"corporation|\binc\b|\bcorp\b", name="option:corporation"),
            _p(r"partnership|\bllp\b|\blp\b", name="option:partnership"),
            _p(r"sole\s*proprietor", name="option:sole_proprietor"),
            _p(r"non[-\s]?profit", name="option:nonprofit"),
        ),
    ),
    ClassificationPattern(
        category=Category.REGISTERED_AGENT,
        priority=85,
        patterns=(
            _p(r"registered\s*agent", 1.1),
            _p(r"statutory\s*agent", 1.1),
            _p(r"agent\s*for\s*service(\s*of\s*process)?", 1.1),
            _p(r"resident\s*agent"),
        ),
        keywords=("registeredagent", "agent", "ra"),
    ),
    ClassificationPattern(
        category=Category.EMAIL,
        priority=85,
        patterns=(
            _p(r"e-?mail(\s*address)?"),
            _p(r"electronic\s*mail"),
        ),
        keywords=("email", "mail"),
        kinds=("email",),
    ),
    ClassificationPattern(
        category=Category.PHONE,
        priority=85,
        patterns=(
            _p(r"(tele)?phone(\s*(number|no\.?|#))?"),
            _p(r"\bmobile\b|\bcell\b"),
            _p(r"contact\s*number"),
            _p(r"\bfax\b", 0.8),
        ),
        keywords=("phone", "tel", "telephone", "mobile", "cell"),
        kinds=("tel",),
    ),
    ClassificationPattern(
        category=Category.ADDRESS,
        priority=80,
        patterns=(
            _p(r"street(\s*address)?"),
            _p(r"address(\s*line)?(\s*[12])?"),
            _p(r"(mailing|physical|principal|business)\s*(office\s*)?address"),
            _p(r"p\.?\s*o\.?\s*box"),
        ),
        keywords=("address", "address1", "address2", "street", "addr"),
    ),
    ClassificationPattern(
        category=Category.CITY,
        priority=75,
        patterns=(_p(r"\bcity\b"), _p(r"\btown\b"), _p(r"municipality")),
        keywords=("city", "town"),
    ),
    ClassificationPattern(
        category=Category.STATE,
        priority=75,
        patterns=(
            _p(r"\bstate\b"),
            _p(r"\bprovince\b"),
        ),
        keywords=("state", "province"),
        option_patterns=(_p(rf"\b({_US_STATES})\b", name="option:us_state"),),
    ),
    ClassificationPattern(
        category=Category.ZIP_CODE,
        priority=75,
        patterns=(_p(r"\bzip(\s*code)?\b"), _p(r"postal\s*code")),
        keywords=("zip", "zipcode", "postal", "postalcode"),
    ),
    ClassificationPattern(
        category=Category.OWNER_NAME,
        priority=70,
        patterns=(
            _p(r"(owner|member|manager|officer|director|organizer|incorporator)('?s)?\s*(full\s*)?name"),
            _p(r"(first|last|middle)\s*name", 0.8),
            _p(r"\bfull\s*name\b", 0.8),
            _p(r"responsible\s*party"),
        ),
        keywords=("firstname", "lastname", "fullname", "owner", "officer", "organizer"),
    ),
    ClassificationPattern(
        category=Category.BUSINESS_PURPOSE,
        priority=70,
        patterns=(
            _p(r"business\s*purpose"),
            _p(r"nature\s*of\s*(the\s*)?business"),
            _p(r"business\s*activit(y|ies)"),
            _p(r"\bpurpose\b", 0.8),
        ),
        keywords=("purpose", "activity"),
    ),
    ClassificationPattern(
        category=Category.NAICS_CODE,
        priority=70,
        patterns=(_p(r"\bnaics\b", 1.1), _p(r"industry\s*(code|classification)")),
        keywords=("naics", "industrycode"),
    ),
    ClassificationPattern(
        category=Category.FORMATION_DATE,
        priority=65,
        patterns=(
            _p(r"date\s*of\s*(formation|incorporation|organi[sz]ation)"),
            _p(r"(formation|incorporation|organi[sz]ation)\s*date"),
            _p(r"effective\s*date"),
            _p(r"(business\s*)?start\s*date"),
        ),
        keywords=("formationdate", "effectivedate", "startdate"),
        kinds=("date",),
    ),
    ClassificationPattern(
        category=Category.CERTIFICATION,
        priority=60,
        patterns=(
            _p(r"certif(y|ication)"),
            _p(r"acknowledge"),
            _p(r"\bi\s*agree\b|\bagree\b"),
            _p(r"\battest"),
            _p(r"under\s*penalty\s*of\s*perjury"),
        ),
        keywords=("certify", "certification", "agree", "attest", "acknowledge"),
        kinds=("checkbox",),
    ),
)

PATTERNS_BY_CATEGORY: MappingProxyType[Category, ClassificationPattern] = MappingProxyType(
    {p.category: p for p in PATTERNS}
)

# ---------------------------------------------------------------------------
# Jurisdiction overrides: {jurisdiction: {category: delta}}
# ---------------------------------------------------------------------------

JURISDICTION_OVERRIDES: MappingProxyType[str, MappingProxyType[Category, float]] = MappingProxyType(
    {
        # MyTax.DC.gov labels the EIN "FEIN/SSN" and asks for it on every form.
        "DC": MappingProxyType({Category.EIN: 10.0, Category.SSN: -10.0}),
        # Sunbiz calls the registered agent the "registered agent/resident agent".
        "FL": MappingProxyType({Category.REGISTERED_AGENT: 10.0}),
        # Delaware filings use "statutory agent" language and no DBA on formation.
        "DE": MappingProxyType({Category.REGISTERED_AGENT: 10.0, Category.DBA: -10.0}),
        # California asks for "agent for service of process".
        "CA": MappingProxyType({Category.REGISTERED_AGENT: 10.0}),
        # Federal EIN application: "responsible party" is the owner.
        "US": MappingProxyType({Category.EIN: 10.0, Category.OWNER_NAME: 10.0}),
    }
)


def overrides_for(jurisdiction: str) -> MappingProxyType[Category, float]:
    """Weight deltas for *jurisdiction* (empty mapping when none)."""
    return JURISDICTION_OVERRIDES.get(jurisdiction.upper(), MappingProxyType({}))
