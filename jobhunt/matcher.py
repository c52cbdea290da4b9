"""Cheap filters that decide whether a lead is worth persisting.

Two stages, short-circuiting on the first failure:
1. Location: block list wins, then remote handling, then the allow list
2. Keyword: the lead must hit at least one title or keyword rule term

Pure Python substring checks; no network or storage access.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import NamedTuple

from jobhunt.config import PipelineConfig, Rule
from jobhunt.models import Lead
from jobhunt.scoring import first_match

logger = logging.getLogger(__name__)


class RejectionReason(Enum):
    """Why a lead was rejected by the filters."""

    LOCATION = "location"
    NO_KEYWORD_MATCH = "no_keyword_match"


class FilterResult(NamedTuple):
    """Result of filtering a single lead."""

    lead: Lead
    passed: bool
    reason: RejectionReason | None = None


# ── Location Stage ──────────────────────────────────────────────────────────


def _mentions(term: str, *fields: str) -> bool:
    needle = term.strip().lower()
    if not needle:
        return False
    return any(needle in f for f in fields)


def passes_location(config: PipelineConfig, lead: Lead) -> bool:
    """Apply the block list, remote policy and allow list, in that order."""
    filters = config.filters
    location = (lead.location or "").strip().lower()
    title = (lead.title or "").strip().lower()
    desc = (lead.description or "").strip().lower()

    for blocked in filters.locations_block:
        if _mentions(blocked, location, title, desc):
            return False

    is_remote = "remote" in location or "remote" in title or "remote" in desc
    if is_remote:
        return filters.remote_ok

    allow = [a for a in filters.locations_allow if a.strip()]
    if not allow:
        return True
    return any(_mentions(a, location, title, desc) for a in allow)


# ── Keyword Stage ───────────────────────────────────────────────────────────


def matches_any_rule(rules: list[Rule], text: str) -> bool:
    return any(first_match(text, rule.any) is not None for rule in rules)


def passes_keywords(config: PipelineConfig, lead: Lead) -> bool:
    text = lead.text
    scoring = config.scoring
    return matches_any_rule(scoring.title_rules, text) or matches_any_rule(
        scoring.keyword_rules, text
    )


# ── Entry Points ────────────────────────────────────────────────────────────


def should_keep_job(config: PipelineConfig, lead: Lead) -> FilterResult:
    """Run both stages and report the first failing one."""
    if not passes_location(config, lead):
        return FilterResult(lead=lead, passed=False, reason=RejectionReason.LOCATION)
    if not passes_keywords(config, lead):
        return FilterResult(lead=lead, passed=False, reason=RejectionReason.NO_KEYWORD_MATCH)
    return FilterResult(lead=lead, passed=True)
