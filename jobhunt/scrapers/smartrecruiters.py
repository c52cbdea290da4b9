"""SmartRecruiters postings fetcher.

Public API, paginated by offset:
  https://api.smartrecruiters.com/v1/companies/{slug}/postings?limit=100&offset=N

Each page carries ``content`` (the postings) and ``totalFound``.
"""

from __future__ import annotations

import logging

from jobhunt.config import Company
from jobhunt.deadline import Deadline
from jobhunt.identity import vendor_source_id
from jobhunt.models import Lead
from jobhunt.normalize import (
    clean_text,
    first_non_empty,
    infer_work_mode,
    normalize_location,
    parse_posted_date,
)
from jobhunt.scrapers.base import CompanyFetcher

logger = logging.getLogger(__name__)

API_URL = "https://api.smartrecruiters.com/v1/companies/{slug}/postings"
JOB_URL = "https://jobs.smartrecruiters.com/{slug}/{id}"
PAGE_SIZE = 100
MAX_OFFSET = 5000


class SmartRecruitersFetcher(CompanyFetcher):
    """Fetches postings from the SmartRecruiters public postings API."""

    source_name = "smartrecruiters"
    label = "SmartRecruiters"

    def fetch_company(self, company: Company, deadline: Deadline) -> list[Lead]:
        url = API_URL.format(slug=company.slug)
        leads: list[Lead] = []
        offset = 0

        while True:
            if deadline.done:
                logger.warning("[%s] company=%r deadline reached at offset %d, returning %d leads",
                               self.name, company.display_name, offset, len(leads))
                break

            data = self._get_json(url, deadline, params={"limit": PAGE_SIZE, "offset": offset})
            if not isinstance(data, dict):
                break
            content = data.get("content") or []
            if not content:
                break

            for raw in content:
                lead = self._parse_posting(company, raw)
                if lead:
                    leads.append(lead)

            offset += len(content)
            total = int(data.get("totalFound") or 0)
            if total and offset >= total:
                break
            if offset > MAX_OFFSET:
                logger.warning("[%s] company=%r hit offset ceiling %d",
                               self.name, company.display_name, MAX_OFFSET)
                break

        return leads

    def _parse_posting(self, company: Company, raw: dict) -> Lead | None:
        posting_id = first_non_empty(raw.get("id"), raw.get("uuid"), raw.get("ref"))
        title = clean_text(raw.get("name"))
        if not posting_id or not title:
            return None

        loc = raw.get("location") or {}
        location = normalize_location(", ".join(
            part for part in (
                clean_text(loc.get("city")),
                clean_text(loc.get("region")),
                clean_text(loc.get("country")),
            ) if part
        ))
        if loc.get("remote") and "remote" not in location.lower():
            location = f"{location} (Remote)" if location else "Remote"

        return Lead(
            company=company.display_name,
            title=title,
            url=JOB_URL.format(slug=company.slug, id=posting_id),
            source=self.label,
            location=location,
            work_mode=infer_work_mode(location, title),
            vendor_job_id=vendor_source_id("smartrecruiters", company.slug, posting_id),
            posted_at=parse_posted_date(raw.get("releasedDate")),
        )
