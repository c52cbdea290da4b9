"""LinkedIn job-alert email parser.

LinkedIn alert emails are table-based HTML. Each job card contains
several anchors to the same ``/jobs/view/<id>`` posting (logo, title,
"View job" button), so anchors are merged by job id before anything is
emitted. Otherwise a logo anchor seen first would produce a title-less
job that later dedupes the real one away.

Typical card structure:
  <table>
    <tr><td><a href=".../comm/jobs/view/123?trk=..."><img src="logo"></a></td>
        <td><a href=".../comm/jobs/view/123">Senior Engineer</a>
            <p>Acme Corp · Austin, TX (Remote)</p>
            <p>$150K - $180K / year</p></td></tr>
  </table>
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

from bs4 import BeautifulSoup, Tag

from jobhunt.urls import canonicalize_url

logger = logging.getLogger(__name__)

CARD_SEPARATOR = " · "

SALARY_RE = re.compile(
    r"\$\s?\d[\d,]*(?:K|M)?\s*(?:-\s*\$\s?\d[\d,]*(?:K|M)?)?\s*/\s*year"
)
_JOB_ID_RE = re.compile(r"/jobs/view/(\d+)")

# Badges LinkedIn appends to the title text.
BADGE_SUFFIXES = ("Actively recruiting", "Easy Apply", "Promoted")

# Card lines that are social proof rather than a title.
NON_TITLE_MARKERS = ("alumni", "connections", "applicants", "school")

# Button labels on the same anchors as the posting.
BUTTON_TEXT = frozenset({"view job", "apply", "apply now", "see all jobs", "view all jobs"})


@dataclass
class LinkedInJob:
    """One job card from an alert email."""

    url: str
    source_id: str = ""  # "linkedin:<id>" when the URL carries one
    title: str = ""
    company: str = ""
    location: str = ""
    salary: str = ""
    logo_url: str = ""


def clean_card_text(text: str | None) -> str:
    if not text:
        return ""
    return " ".join(text.replace("\u00a0", " ").split())


def looks_like_job_alert(subject: str, body: str) -> bool:
    """True for LinkedIn alert mails; the body check avoids false positives."""
    subj = (subject or "").lower()
    if "job alert" not in subj and "linkedin" not in subj:
        return False
    lb = (body or "").lower()
    return "linkedin.com/comm/jobs/view" in lb or "linkedin.com/jobs/view" in lb


def linkedin_source_id(job_url: str) -> str:
    m = _JOB_ID_RE.search(job_url)
    return f"linkedin:{m.group(1)}" if m else ""


def unwrap_redirect(href: str) -> str:
    """Follow ``?url=`` wrappers and Google ``/url?q=`` redirects."""
    try:
        parts = urlsplit(href)
    except ValueError:
        return ""
    query = parse_qs(parts.query)

    wrapped = (query.get("url") or [""])[0]
    if wrapped and urlsplit(wrapped).netloc:
        return wrapped

    if "google." in parts.netloc.lower() and parts.path.startswith("/url"):
        target = (query.get("q") or [""])[0]
        if target and urlsplit(target).netloc:
            return target

    return href


def strip_badges(text: str) -> str:
    """Remove badge suffixes; return "" for text that is not a title."""
    text = (text or "").strip()
    if not text:
        return ""
    for badge in BADGE_SUFFIXES:
        text = text.replace(badge, "").strip()
    low = text.lower()
    if low in BUTTON_TEXT or any(marker in low for marker in NON_TITLE_MARKERS):
        return ""
    return " ".join(text.split())


def is_better_title(candidate: str, current: str) -> bool:
    """Prefer a real-length title, and shorter over concatenated noise."""
    candidate = candidate.strip()
    if not candidate or not 4 <= len(candidate) <= 120:
        return False
    if not current.strip():
        return True
    return len(candidate) < len(current)


def _card_for(anchor: Tag) -> Tag:
    card = anchor.find_parent("table")
    if card is None:
        card = anchor.find_parent("tr")
    if card is None:
        card = anchor.parent
    return card if card is not None else anchor


def _is_job_view_link(href: str) -> bool:
    lh = href.lower()
    if "/jobs/view/" not in lh and "/comm/jobs/view/" not in lh:
        return False
    return "linkedin.com" in lh


def parse_job_alert_html(html: str) -> list[LinkedInJob]:
    """Extract job cards from a LinkedIn alert email body.

    Only jobs with both a URL and a title are returned, in first-seen order.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    by_key: dict[str, LinkedInJob] = {}

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or not _is_job_view_link(href):
            continue

        job_url = canonicalize_url(unwrap_redirect(href))
        if not job_url:
            continue

        source_id = linkedin_source_id(job_url)
        key = source_id or job_url
        job = by_key.get(key)
        if job is None:
            job = LinkedInJob(url=job_url, source_id=source_id)
            by_key[key] = job

        candidate = strip_badges(clean_card_text(anchor.get_text(" ")))
        if is_better_title(candidate, job.title):
            job.title = candidate

        card = _card_for(anchor)

        # "Company · Location" lives in a <p>; titles sometimes do too.
        for p in card.find_all("p"):
            text = clean_card_text(p.get_text(" "))
            if not text:
                continue
            if CARD_SEPARATOR in text:
                if not job.company and not job.location:
                    company, location = text.split(CARD_SEPARATOR, 1)
                    job.company = company.strip()
                    job.location = location.strip()
                continue
            if SALARY_RE.search(text):
                continue
            candidate = strip_badges(text)
            if is_better_title(candidate, job.title):
                job.title = candidate

        if not job.logo_url:
            img = card.find("img")
            if img is not None:
                job.logo_url = (img.get("src") or img.get("data-src") or "").strip()

        if not job.salary:
            m = SALARY_RE.search(clean_card_text(card.get_text(" ")))
            if m:
                job.salary = m.group(0).strip()

    jobs = [j for j in by_key.values() if j.url.strip() and j.title.strip()]
    logger.debug("[linkedin] parsed %d jobs from %d candidates", len(jobs), len(by_key))
    return jobs
