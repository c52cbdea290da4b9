"""Rule-based lead scoring.

Each title rule, keyword rule and penalty contributes its weight once, on
the first of its terms found in the lowercased title + description.
Rules add their tag; penalties only move the score. Blank terms never
match.
"""

from __future__ import annotations

from typing import Iterable

from jobhunt.config import Penalty, Rule, ScoringConfig
from jobhunt.models import Lead, ScoreResult


def first_match(text: str, terms: Iterable[str]) -> str | None:
    """Return the first non-blank term contained in ``text`` (already lowercase)."""
    for term in terms:
        needle = term.strip().lower()
        if needle and needle in text:
            return term
    return None


def rule_matches(text: str, rule: Rule | Penalty) -> bool:
    return first_match(text, rule.any) is not None


class RuleScorer:
    """Scores leads against a ScoringConfig. Holds no mutable state."""

    def __init__(self, config: ScoringConfig):
        self.config = config

    def score_text(self, text: str) -> ScoreResult:
        text = text.lower()
        score = 0
        tags: list[str] = []

        for rule in [*self.config.title_rules, *self.config.keyword_rules]:
            if rule_matches(text, rule):
                score += rule.weight
                if rule.tag and rule.tag not in tags:
                    tags.append(rule.tag)

        for penalty in self.config.penalties:
            if rule_matches(text, penalty):
                score += penalty.weight

        return ScoreResult(score=score, tags=tuple(tags))

    def score(self, lead: Lead) -> ScoreResult:
        return self.score_text(lead.text)
