# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""URL → jurisdiction code + prior likelihood of a business-registration form.

Rules are evaluated in a fixed order, most specific first:

  1. sub-domain  – known filing portals (``mytax.dc.gov``, ``sunbiz.org``)
  2. domain      – state government domains (``ca.gov``, ``state.tx.us``)
  3. generic     – any ``.gov`` / ``.us`` host

The first matching rule sets the jurisdiction and base prior.  URL path and
query terms that point at registration/tax/licensing flows add a capped bonus
on top.  Pure module: no I/O, no state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlparse

from . import UNKNOWN_JURISDICTION

TIER_SUBDOMAIN = "subdomain"
TIER_DOMAIN = "domain"
TIER_GENERIC = "generic"

UNKNOWN_PRIOR = 5

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class JurisdictionRule:
    """Host (and optional path) pattern mapped to a jurisdiction."""

    name: str
    code: str
    host_pattern: re.Pattern[str]
    prior: int
    tier: str
    path_pattern: re.Pattern[str] | None = None

    def matches(self, host: str, path: str) -> bool:
        if not self.host_pattern.search(host):
            return False
        return self.path_pattern is None or bool(self.path_pattern.search(path))


@dataclass(frozen=True, slots=True)
class JurisdictionMatch:
    """Result of URL analysis."""

    code: str
    prior: int  # 0-100
    rule: str | None  # name of the winning rule
    tier: str | None
    signals: tuple[str, ...] = ()

    @property
    def is_known(self) -> bool:
        return self.code != UNKNOWN_JURISDICTION


def _rule(name: str, code: str, host: str, prior: int, tier: str, path: str | None = None) -> JurisdictionRule:
    return JurisdictionRule(
        name=name,
        code=code,
        host_pattern=re.compile(host, re.IGNORECASE),
        prior=prior,
        tier=tier,
        path_pattern=re.compile(path, re.IGNORECASE) if path else None,
    )


# ---------------------------------------------------------------------------
# Rule table: sub-domain portals
# ---------------------------------------------------------------------------

_SUBDOMAIN_RULES: list[JurisdictionRule] = [
    _rule("dc_mytax", "DC", r"(^|\.)mytax\.dc\.gov$", 50, TIER_SUBDOMAIN),
    _rule("dc_corponline", "DC", r"(^|\.)corponline\.dcra\.dc\.gov$", 50, TIER_SUBDOMAIN),
    _rule("dc_dlcp", "DC", r"(^|\.)(dcra|dlcp)\.dc\.gov$", 40, TIER_SUBDOMAIN),
    _rule("ca_bizfile", "CA", r"(^|\.)bizfileonline\.sos\.ca\.gov$", 50, TIER_SUBDOMAIN),
    _rule("ca_sos", "CA", r"(^|\.)sos\.ca\.gov$", 40, TIER_SUBDOMAIN),
    _rule("fl_sunbiz", "FL", r"(^|\.)sunbiz\.org$", 50, TIER_SUBDOMAIN),
    _rule("fl_dos", "FL", r"(^|\.)dos\.myflorida\.com$", 40, TIER_SUBDOMAIN),
    _rule("de_corp", "DE", r"(^|\.)corp\.delaware\.gov$", 50, TIER_SUBDOMAIN),
    _rule("tx_sos", "TX", r"(^|\.)sos\.state\.tx\.us$", 45, TIER_SUBDOMAIN),
    _rule("tx_comptroller", "TX", r"(^|\.)comptroller\.texas\.gov$", 40, TIER_SUBDOMAIN),
    _rule("ny_dos", "NY", r"(^|\.)dos\.ny\.gov$", 45, TIER_SUBDOMAIN),
    _rule("ny_business_express", "NY", r"(^|\.)businessexpress\.ny\.gov$", 50, TIER_SUBDOMAIN),
    _rule("il_sos", "IL", r"(^|\.)ilsos\.gov$", 45, TIER_SUBDOMAIN),
    _rule("wa_ccfs", "WA", r"(^|\.)ccfs\.sos\.wa\.gov$", 50, TIER_SUBDOMAIN),
    _rule("ga_ecorp", "GA", r"(^|\.)ecorp\.sos\.ga\.gov$", 50, TIER_SUBDOMAIN),
    _rule("nc_sos", "NC", r"(^|\.)sosnc\.gov$", 45, TIER_SUBDOMAIN),
    _rule("pa_dos", "PA", r"(^|\.)file\.dos\.pa\.gov$", 50, TIER_SUBDOMAIN),
    _rule("oh_sos", "OH", r"(^|\.)ohiosos\.gov$", 45, TIER_SUBDOMAIN),
    _rule("az_acc", "AZ", r"(^|\.)ecorp\.azcc\.gov$", 50, TIER_SUBDOMAIN),
    _rule("us_irs_ein", "US", r"(^|\.)irs\.gov$", 40, TIER_SUBDOMAIN, path=r"ein|employer-id|modiein"),
    _rule("us_sba", "US", r"(^|\.)sba\.gov$", 25, TIER_SUBDOMAIN),
]

# ---------------------------------------------------------------------------
# Rule table: state domains
# ---------------------------------------------------------------------------

_STATE_CODES: tuple[str, ...] = (
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA", "HI", "ID", "IL", "IN", "IA",
    "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
    "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC", "SD", "TN", "TX", "UT", "VT",
    "VA", "WA", "WV", "WI", "WY", "DC",
)  # fmt: skip

# Domains a state uses besides ``<code>.gov``.
_STATE_ALT_DOMAINS: dict[str, tuple[str, ...]] = {
    "TX": ("texas.gov",),
    "FL": ("myflorida.com", "florida.gov"),
    "DE": ("delaware.gov",),
    "NJ": ("state.nj.us",),
    "MA": ("mass.gov",),
    "CA": ("california.gov",),
}

_DOMAIN_RULES: list[JurisdictionRule] = []
for _code in _STATE_CODES:
    _low = _code.lower()
    _DOMAIN_RULES.append(_rule(f"{_low}_gov", _code, rf"(^|\.){_low}\.gov$", 35, TIER_DOMAIN))
    _DOMAIN_RULES.append(_rule(f"{_low}_state_us", _code, rf"(^|\.)state\.{_low}\.us$", 35, TIER_DOMAIN))
    for _i, _domain in enumerate(_STATE_ALT_DOMAINS.get(_code, ())):
        _DOMAIN_RULES.append(
            _rule(f"{_low}_alt{_i}", _code, rf"(^|\.){re.escape(_domain)}$", 30, TIER_DOMAIN),
        )

_GENERIC_RULES: list[JurisdictionRule] = [
    _rule("generic_gov", "GOV", r"\.gov$", 20, TIER_GENERIC),
    _rule("generic_us", "GOV", r"\.us$", 15, TIER_GENERIC),
]

RULES: tuple[JurisdictionRule, ...] = (*_SUBDOMAIN_RULES, *_DOMAIN_RULES, *_GENERIC_RULES)

# ---------------------------------------------------------------------------
# URL term bonuses
# ---------------------------------------------------------------------------

# term -> points, matched against the lower-cased path
_PATH_TERMS: dict[str, int] = {
    "register": 15,
    "registration": 15,
    "business": 15,
    "entity": 10,
    "llc": 15,
    "corporation": 15,
    "incorporat": 15,
    "formation": 10,
    "tax": 8,
    "revenue": 8,
    "ein": 8,
    "license": 5,
    "permit": 5,
}
_PATH_BONUS_CAP = 40
_MULTI_TERM_BONUS = 8  # 2+ distinct path terms

_QUERY_TERMS: tuple[str, ...] = (
    "register",
    "entity",
    "business",
    "formation",
    "filing",
    "llc",
    "corp",
    "form",
)
_QUERY_BONUS_CAP = 15


def _path_bonus(path: str) -> tuple[int, list[str]]:
    hits = [term for term in _PATH_TERMS if term in path]
    score = sum(_PATH_TERMS[t] for t in hits)
    if len(hits) >= 2:
        score += _MULTI_TERM_BONUS
    return min(score, _PATH_BONUS_CAP), [f"path:{t}" for t in hits]


def _query_bonus(query: str) -> tuple[int, list[str]]:
    score = 0
    signals: list[str] = []
    for key, value in parse_qsl(query, keep_blank_values=True):
        blob = f"{key} {value}".lower()
        for term in _QUERY_TERMS:
            if term in blob:
                score += 5
                signals.append(f"query:{term}")
    return min(score, _QUERY_BONUS_CAP), signals


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _split_url(url: str) -> tuple[str, str, str] | None:
    candidate = url.strip()
    if not candidate:
        return None
    if "://" not in candidate:
        candidate = "https://" + candidate
    try:
        parsed = urlparse(candidate)
        host = (parsed.hostname or "").lower().rstrip(".")
    except ValueError:
        return None
    if not host:
        return None
    return host, parsed.path.lower(), parsed.query


def analyze_url(url: str, rules: tuple[JurisdictionRule, ...] = RULES) -> JurisdictionMatch:
    """Map *url* to a jurisdiction code and a 0-100 prior.

    No match (or an unparsable URL) yields ``UNKNOWN`` with a low prior.
    """
    parts = _split_url(url)
    if parts is None:
        return JurisdictionMatch(code=UNKNOWN_JURISDICTION, prior=0, rule=None, tier=None)
    host, path, query = parts

    winner = next((r for r in rules if r.matches(host, path)), None)
    path_score, path_signals = _path_bonus(path)
    query_score, query_signals = _query_bonus(query)

    if winner is None:
        # Non-government hosts only get a fraction of the term bonus.
        prior = min(UNKNOWN_PRIOR + path_score // 4, 100)
        return JurisdictionMatch(
            code=UNKNOWN_JURISDICTION,
            prior=prior,
            rule=None,
            tier=None,
            signals=tuple(path_signals),
        )

    prior = min(winner.prior + path_score + query_score, 100)
    return JurisdictionMatch(
        code=winner.code,
        prior=prior,
        rule=winner.name,
        tier=winner.tier,
        signals=(f"rule:{winner.name}", *path_signals, *query_signals),
    )


def identify_jurisdiction(url: str) -> str:
    """Shortcut returning only the jurisdiction code."""
    return analyze_url(url).code
