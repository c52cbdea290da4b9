"""Company website lookup used for logo enrichment.

Domains are found with a DuckDuckGo HTML search for
"<company> official website", skipping job boards, ATS vendors and
social sites, then cached in the job store. The favicon of that domain
becomes the job's logo.
"""

from __future__ import annotations

import logging
import re
from typing import Callable
from urllib.parse import parse_qs, quote, quote_plus, urlsplit

import requests
from bs4 import BeautifulSoup

from jobhunt.storage import JobStore

logger = logging.getLogger(__name__)

SEARCH_URL = "https://duckduckgo.com/html/?q={query}"
FAVICON_URL = "https://www.google.com/s2/favicons?domain={domain}&sz=64"
DEFAULT_SEARCH_TIMEOUT = 12.0

DOMAIN_BLOCKLIST = (
    "linkedin.com",
    "indeed.com",
    "glassdoor.com",
    "ziprecruiter.com",
    "monster.com",
    "careerbuilder.com",
    "simplyhired.com",
    "builtin.com",
    "levels.fyi",
    "crunchbase.com",
    "bloomberg.com",
    "wikipedia.org",
    "facebook.com",
    "twitter.com",
    "x.com",
    "youtube.com",
    "instagram.com",
    # ATS / job boards
    "greenhouse.io",
    "lever.co",
    "myworkdayjobs.com",
    "workday.com",
    "smartrecruiters.com",
    "icims.com",
    "jobvite.com",
    "applytojob.com",
    "ashbyhq.com",
)

_COMPANY_SUFFIX_RE = re.compile(
    r"(?:,?\s+(?:inc|llc|ltd|corp|corporation|co)\.?|\s+recruiting|\s+staffing)\s*$",
    re.IGNORECASE,
)


def sanitize_company_for_search(company: str) -> str:
    """Strip legal/recruiting suffixes that confuse search engines."""
    name = " ".join((company or "").split())
    while True:
        stripped = _COMPANY_SUFFIX_RE.sub("", name).strip()
        if stripped == name:
            break
        name = stripped
    return name.strip(" ,.")


def is_blocked_domain(host: str) -> bool:
    host = host.lower()
    return any(host == b or host.endswith("." + b) for b in DOMAIN_BLOCKLIST)


def decode_ddg_redirect(href: str) -> str:
    """Unwrap DuckDuckGo's ``/l/?uddg=<target>`` redirect links."""
    try:
        parts = urlsplit(href)
    except ValueError:
        return href
    target = parse_qs(parts.query).get("uddg")
    if target and target[0]:
        return target[0]
    return href


def favicon_url_for_domain(domain: str) -> str:
    d = (domain or "").strip().lower()
    for prefix in ("http://", "https://"):
        if d.startswith(prefix):
            d = d[len(prefix):]
    if d.startswith("www."):
        d = d[4:]
    d = d.strip("/")
    if not d:
        return ""
    return FAVICON_URL.format(domain=quote(d, safe=""))


class DomainFinder:
    """Looks up a company's website domain via a live web search."""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_SEARCH_TIMEOUT,
        user_agent: str = "Mozilla/5.0",
    ):
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", user_agent)
        self.timeout = timeout

    def __call__(self, company: str) -> str:
        return self.find(company)

    def find(self, company: str) -> str:
        """Return the first non-blocked result host, or "" if none."""
        name = sanitize_company_for_search(company)
        if not name:
            return ""

        url = SEARCH_URL.format(query=quote_plus(f"{name} official website"))
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("[domain] search failed company=%r err=%s", company, exc)
            return ""
        if not 200 <= resp.status_code < 300:
            logger.warning("[domain] search status %d company=%r", resp.status_code, company)
            return ""

        soup = BeautifulSoup(resp.text, "html.parser")
        for a in soup.select("a.result__a"):
            href = (a.get("href") or "").strip()
            if not href:
                continue
            target = decode_ddg_redirect(href)
            try:
                host = (urlsplit(target).hostname or "").lower()
            except ValueError:
                continue
            if not host:
                continue
            if host.startswith("www."):
                host = host[4:]
            if is_blocked_domain(host):
                continue
            return host
        return ""


def find_company_domain(company: str, session: requests.Session | None = None) -> str:
    """One-off live lookup with a fresh finder."""
    return DomainFinder(session).find(company)


def get_or_find_company_domain(
    store: JobStore, company: str, finder: Callable[[str], str] | None = None
) -> str:
    """Cached domain if known, otherwise search and remember a hit."""
    cached = store.get_company_domain(company)
    if cached:
        return cached

    found = (finder or find_company_domain)(company)
    if not found or is_blocked_domain(found):
        return ""
    store.upsert_company_domain(company, found)
    return found
