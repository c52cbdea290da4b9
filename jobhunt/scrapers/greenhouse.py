"""Greenhouse job board fetcher.

Greenhouse provides a public JSON API at:
  https://boards-api.greenhouse.io/v1/boards/{board_token}/jobs

With ``content=true`` it returns the full description HTML alongside
title, location and the absolute URL of each posting, so one request
per company is enough. No pagination.
"""

from __future__ import annotations

import logging

from jobhunt.config import Company
from jobhunt.deadline import Deadline
from jobhunt.identity import vendor_source_id
from jobhunt.models import Lead
from jobhunt.normalize import html_to_text, infer_work_mode, normalize_location, parse_posted_date
from jobhunt.scrapers.base import CompanyFetcher

logger = logging.getLogger(__name__)

API_BASE = "https://boards-api.greenhouse.io/v1/boards"


class GreenhouseFetcher(CompanyFetcher):
    """Fetches job listings from the Greenhouse public JSON API."""

    source_name = "greenhouse"
    label = "Greenhouse"

    def fetch_company(self, company: Company, deadline: Deadline) -> list[Lead]:
        url = f"{API_BASE}/{company.slug}/jobs"
        data = self._get_json(url, deadline, params={"content": "true"})

        raw_jobs = data.get("jobs", []) if isinstance(data, dict) else []
        logger.debug("[%s] board=%s returned %d jobs", self.name, company.slug, len(raw_jobs))

        leads: list[Lead] = []
        for raw in raw_jobs:
            lead = self._parse_job(company, raw)
            if lead:
                leads.append(lead)
        return leads

    def _parse_job(self, company: Company, raw: dict) -> Lead | None:
        """Convert a single Greenhouse API job object into a Lead."""
        title = (raw.get("title") or "").strip()
        absolute_url = (raw.get("absolute_url") or "").strip()
        if not title or not absolute_url:
            return None

        location = raw.get("location") or {}
        location_name = location.get("name", "") if isinstance(location, dict) else ""
        location_name = normalize_location(location_name)

        # Greenhouse double-escapes the content HTML
        content = raw.get("content") or ""
        description = html_to_text(html_to_text(content)) if content else ""

        job_id = str(raw.get("id") or "").strip()

        return Lead(
            company=company.display_name,
            title=title,
            url=absolute_url,
            source=self.label,
            location=location_name,
            work_mode=infer_work_mode(location_name, title),
            vendor_job_id=vendor_source_id("greenhouse", company.slug, job_id) if job_id else "",
            description=description,
            posted_at=parse_posted_date(raw.get("updated_at")),
        )
