"""Lead processing: filter, score, persist, enrich.

Leads from one poll cycle are handled sequentially in arrival order:

  1. Filter (location, then keyword gate); rejections are logged and skipped
  2. Build the row: score, source id, canonical URL, field defaults
  3. Insert-if-new; a duplicate never triggers enrichment
  4. For new rows only: company domain -> favicon -> logo_key backfill
  5. Notify once per inserted row

The first insert of a source id wins for every column except logo_key,
which may be filled in later (once) by a duplicate that carries a logo.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

import requests

from jobhunt.config import PipelineConfig
from jobhunt.enrichment import favicon_url_for_domain, get_or_find_company_domain
from jobhunt.errors import MissingURLError
from jobhunt.identity import resolve_source_id
from jobhunt.matcher import should_keep_job
from jobhunt.models import JobRow, Lead
from jobhunt.normalize import clean_text, infer_work_mode, normalize_location
from jobhunt.scoring import RuleScorer
from jobhunt.storage import JobStore, normalize_company_key
from jobhunt.urls import canonicalize_url

logger = logging.getLogger(__name__)

# Lookups that may fail without affecting the row that triggered them.
_ENRICHMENT_ERRORS = (requests.RequestException, sqlite3.Error)


@dataclass
class ProcessSummary:
    """Counts for one call to LeadProcessor.process()."""

    seen: int = 0
    added: int = 0
    duplicates: int = 0
    errors: int = 0
    rejected: Counter = field(default_factory=Counter)
    logos_backfilled: int = 0


class LeadProcessor:
    """Turns leads into persisted job rows."""

    def __init__(
        self,
        config: PipelineConfig,
        store: JobStore,
        domain_finder: Callable[[str], str] | None = None,
        on_new_job: Callable[[], None] | None = None,
    ):
        self.config = config
        self.store = store
        self.scorer = RuleScorer(config.scoring)
        self.domain_finder = domain_finder
        self.on_new_job = on_new_job

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def build_row(self, lead: Lead) -> JobRow:
        """Score and normalise a lead into a row (defaults applied on insert)."""
        result = self.scorer.score(lead)
        source_id = resolve_source_id(lead)
        location = normalize_location(lead.location)
        work_mode = clean_text(lead.work_mode) or infer_work_mode(
            location, lead.title, lead.description
        )
        now = datetime.now(timezone.utc)
        return JobRow(
            company=clean_text(lead.company),
            title=clean_text(lead.title),
            location=location,
            work_mode=work_mode,
            url=canonicalize_url(lead.url),
            source_id=source_id,
            source=lead.source,
            score=result.score,
            tags=list(result.tags),
            received_at=lead.posted_at or now,
            first_seen=now,
        )

    def process(self, leads: Iterable[Lead]) -> ProcessSummary:
        """Process one cycle's leads. Returns counts; never raises per-lead errors."""
        summary = ProcessSummary()
        # Run-local caches; misses are cached as "" until the next cycle.
        domain_cache: dict[str, str] = {}
        logo_cache: dict[str, str] = {}
        image_cache: dict[str, str] = {}

        for lead in leads:
            summary.seen += 1

            verdict = should_keep_job(self.config, lead)
            if not verdict.passed:
                reason = verdict.reason.value if verdict.reason else "unknown"
                summary.rejected[reason] += 1
                logger.debug("[%s] skipped (%s) title=%r loc=%r url=%r",
                             lead.source, reason, lead.title, lead.location, lead.url)
                continue

            try:
                row = self.build_row(lead)
            except MissingURLError as exc:
                summary.errors += 1
                logger.error("[%s] rejected lead: %s", lead.source, exc)
                continue

            carried_logo = ""
            if lead.logo_url and self.config.enrichment.enabled:
                carried_logo = self._cache_logo(lead.logo_url, image_cache)
            row.logo_key = carried_logo

            try:
                inserted = self.store.insert_if_new(row)
            except (sqlite3.Error, MissingURLError) as exc:
                summary.errors += 1
                logger.error("[%s] insert error: %s title=%r url=%r source_id=%r",
                             lead.source, exc, row.title, row.url, row.source_id)
                continue

            if not inserted:
                summary.duplicates += 1
                if carried_logo and self._backfill(row.source_id, carried_logo):
                    summary.logos_backfilled += 1
                continue

            summary.added += 1
            if not row.logo_key and self.config.enrichment.enabled:
                if self._enrich(row, domain_cache, logo_cache, image_cache):
                    summary.logos_backfilled += 1
            self._notify(row)

        logger.info(
            "Processed %d leads: %d added, %d duplicates, %d errors, rejected=%s",
            summary.seen, summary.added, summary.duplicates, summary.errors,
            dict(summary.rejected),
        )
        return summary

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def _enrich(
        self,
        row: JobRow,
        domain_cache: dict[str, str],
        logo_cache: dict[str, str],
        image_cache: dict[str, str],
    ) -> bool:
        """Resolve the company's domain and favicon and backfill logo_key."""
        if self.domain_finder is None or row.company == "Unknown":
            return False

        company_key = normalize_company_key(row.company)
        if company_key in domain_cache:
            domain = domain_cache[company_key]
        else:
            try:
                domain = get_or_find_company_domain(self.store, row.company, self.domain_finder)
            except _ENRICHMENT_ERRORS as exc:
                logger.warning("[logo] domain lookup failed company=%r err=%s", row.company, exc)
                domain = ""
            domain_cache[company_key] = domain

        if not domain:
            logger.debug("[logo] no domain company=%r", row.company)
            return False

        if domain in logo_cache:
            key = logo_cache[domain]
        else:
            key = self._cache_logo(favicon_url_for_domain(domain), image_cache)
            logo_cache[domain] = key

        if not key:
            return False
        logger.debug("[logo] updating company=%r source_id=%r domain=%r key=%s",
                     row.company, row.source_id, domain, key)
        return self._backfill(row.source_id, key)

    def _cache_logo(self, url: str, cache: dict[str, str]) -> str:
        if url in cache:
            return cache[url]
        try:
            key = self.store.cache_image_from_url(url)
        except _ENRICHMENT_ERRORS as exc:
            logger.warning("[logo] cache failed url=%s err=%s", url, exc)
            key = ""
        cache[url] = key
        return key

    def _backfill(self, source_id: str, key: str) -> bool:
        try:
            return self.store.backfill_logo_key(source_id, key)
        except sqlite3.Error as exc:
            logger.error("[logo] backfill failed source_id=%r err=%s", source_id, exc)
            return False

    def _notify(self, row: JobRow) -> None:
        if self.on_new_job is None:
            return
        try:
            self.on_new_job()
        except Exception:
            logger.exception("new-job callback failed for source_id=%r", row.source_id)
