"""URL canonicalisation and link heuristics.

The canonical URL is an identity key: two links that differ only by
tracking parameters, fragment or host case must serialise identically.
"""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAMS = frozenset({
    "gclid",
    "fbclid",
    "msclkid",
    "mc_cid",
    "mc_eid",
    "mkt_tok",
    "trk",
    "trkinfo",
    "refid",
    "ref",
    "src",
    "source",
})

LINKEDIN_JOB_PARAM = "currentJobId"
LINKEDIN_VIEW_URL = "https://www.linkedin.com/jobs/view/{}"

_LINKEDIN_VIEW_RE = re.compile(r"/jobs/view/(\d+)", re.IGNORECASE)


def _is_tracking_param(key: str) -> bool:
    lk = key.lower()
    return lk.startswith("utm_") or lk in TRACKING_PARAMS


def is_linkedin_host(host: str) -> bool:
    """True for linkedin.com and its subdomains. Accepts a netloc with a port."""
    hostname = (host or "").lower().rsplit("@", 1)[-1].split(":", 1)[0]
    return hostname == "linkedin.com" or hostname.endswith(".linkedin.com")


def _collapse_linkedin(path: str, params: list[tuple[str, str]]) -> str | None:
    """Reduce a LinkedIn job link to its /jobs/view/<id> form when possible."""
    m = _LINKEDIN_VIEW_RE.search(path)
    if m:
        return LINKEDIN_VIEW_URL.format(m.group(1))
    for key, value in params:
        if key == LINKEDIN_JOB_PARAM and value.isdigit():
            return LINKEDIN_VIEW_URL.format(value)
    return None


def canonicalize_url(raw: str | None) -> str:
    """Normalise a URL into a stable identity key.

    Lowercases scheme and host, drops the fragment and tracking params,
    keeps only ``currentJobId`` on LinkedIn, and encodes the remaining
    query with sorted keys and values. Malformed input comes back trimmed.
    """
    text = (raw or "").strip()
    if not text:
        return ""
    try:
        parts = urlsplit(text)
        params = parse_qsl(parts.query, keep_blank_values=True)
    except ValueError:
        return text

    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()

    params = [(k, v) for k, v in params if not _is_tracking_param(k)]

    if is_linkedin_host(netloc):
        params = [(k, v) for k, v in params if k == LINKEDIN_JOB_PARAM][:1]
        collapsed = _collapse_linkedin(parts.path, params)
        if collapsed:
            return collapsed

    params.sort()
    query = urlencode(params)
    return urlunsplit((scheme, netloc, parts.path, query, ""))


def url_host(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def is_linkedin_search_url(canonical: str) -> bool:
    """True for LinkedIn job *search* pages, which are not stable postings."""
    try:
        parts = urlsplit(canonical)
    except ValueError:
        return False
    if not is_linkedin_host(parts.netloc):
        return False
    path = parts.path.lower()
    if "/jobs/view/" in path:
        return False
    return "/jobs/search" in path or "/comm/jobs/search" in path


def score_url(url: str) -> int:
    """Rank how much a link looks like a job posting. Higher is better."""
    lu = url.lower()
    score = 0
    if "/jobs/view/" in lu:
        score += 100
    if "greenhouse.io" in lu or "lever.co" in lu or "myworkdayjobs" in lu:
        score += 80
    if "apply" in lu:
        score += 40
    if "/job" in lu or "/careers" in lu:
        score += 20

    if "/alerts" in lu or "/settings" in lu:
        score -= 100
    if "linkedin.com/comm/" in lu:
        score -= 10
    return score
