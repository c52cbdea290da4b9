"""Lever postings fetcher.

Public JSON endpoint, one request per company:
  https://api.lever.co/v0/postings/{slug}?mode=json

Postings without a location in ``categories`` are hydrated from their
hosted page, which usually shows it in the header.
"""

from __future__ import annotations

import logging

from bs4 import BeautifulSoup

from jobhunt.config import Company
from jobhunt.deadline import Deadline
from jobhunt.errors import DeadlineExceeded, UpstreamError
from jobhunt.identity import vendor_source_id
from jobhunt.models import Lead
from jobhunt.normalize import (
    clean_text,
    html_to_text,
    infer_work_mode,
    normalize_location,
    parse_posted_date,
)
from jobhunt.scrapers.base import CompanyFetcher

logger = logging.getLogger(__name__)

API_URL = "https://api.lever.co/v0/postings/{slug}"

# Tried in order on the hosted posting page.
LOCATION_SELECTORS = (
    "[itemprop='jobLocation']",
    "[data-qa='location']",
    ".posting-categories .location",
    ".location",
    ".posting-categories li",
)


class LeverFetcher(CompanyFetcher):
    """Fetches postings from the Lever public postings API."""

    source_name = "lever"
    label = "Lever"

    def fetch_company(self, company: Company, deadline: Deadline) -> list[Lead]:
        postings = self._get_json(
            API_URL.format(slug=company.slug), deadline, params={"mode": "json"}
        )
        if not isinstance(postings, list):
            return []

        leads: list[Lead] = []
        for raw in postings:
            lead = self._parse_posting(company, raw)
            if lead:
                leads.append(lead)

        for lead in leads:
            if lead.location:
                continue
            if deadline.done:
                logger.debug("[%s] deadline reached, skipping hydration for %s",
                             self.name, company.slug)
                break
            self._hydrate(lead, deadline)

        return leads

    def _parse_posting(self, company: Company, raw: dict) -> Lead | None:
        posting_id = str(raw.get("id") or "").strip()
        title = clean_text(raw.get("text"))
        hosted_url = (raw.get("hostedUrl") or "").strip()
        if not posting_id or not title or not hosted_url:
            return None

        categories = raw.get("categories") or {}
        location = normalize_location(categories.get("location", ""))
        description = html_to_text(raw.get("description") or "")

        return Lead(
            company=company.display_name,
            title=title,
            url=hosted_url,
            source=self.label,
            location=location,
            work_mode=infer_work_mode(location, title, description),
            vendor_job_id=vendor_source_id("lever", company.slug, posting_id),
            description=description,
            posted_at=parse_posted_date(raw.get("createdAt")),
        )

    def _hydrate(self, lead: Lead, deadline: Deadline) -> None:
        """Fill a missing location from the hosted posting page. Best effort."""
        try:
            resp = self._get(lead.url, deadline)
        except (UpstreamError, DeadlineExceeded) as exc:
            logger.debug("[%s] hydrate failed url=%s err=%s", self.name, lead.url, exc)
            return

        soup = BeautifulSoup(resp.text, "html.parser")
        for selector in LOCATION_SELECTORS:
            node = soup.select_one(selector)
            text = clean_text(node.get_text(" ")) if node else ""
            if text:
                lead.location = normalize_location(text)
                lead.work_mode = infer_work_mode(lead.location, lead.title, lead.description)
                return
