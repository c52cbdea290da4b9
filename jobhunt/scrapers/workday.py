"""Workday job portal fetcher.

Workday portals are JavaScript SPAs that make predictable API calls
under the hood. The key endpoint pattern is:

  POST https://{tenant}.{wd_instance}.myworkdayjobs.com/wday/cxs/{tenant}/{site}/jobs

Each configured company's slug is the public board URL, e.g.
``https://gilead.wd1.myworkdayjobs.com/en-US/gileadcareers``, from which
tenant, site and optional locale are derived.

Some tenants require a CSRF token: a GET of the board page sets the
``CALYPSO_CSRF_TOKEN`` cookie, which is echoed back in the
``x-calypso-csrf-token`` header. Hosts fronted by Cloudflare may answer
with a challenge page instead; such hosts are marked blocked and skipped
for the rest of the run.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlsplit

import requests

from jobhunt.config import Company
from jobhunt.deadline import Deadline
from jobhunt.errors import BlockedHostError, ConfigError, UpstreamError
from jobhunt.identity import hash_string, vendor_source_id
from jobhunt.models import Lead
from jobhunt.normalize import (
    first_non_empty,
    infer_work_mode,
    normalize_location,
    parse_posted_date,
    truncate,
)
from jobhunt.scrapers.base import CompanyFetcher, decode_json

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
MAX_OFFSET = 5000
CSRF_COOKIE = "CALYPSO_CSRF_TOKEN"
CSRF_HEADER = "x-calypso-csrf-token"
BODY_PREVIEW = 240

_LOCALE_RE = re.compile(r"^[A-Za-z]{2}-[A-Za-z]{2}$")


@dataclass(frozen=True)
class Board:
    """A parsed Workday board URL."""

    scheme: str
    host: str
    tenant: str
    site: str
    locale: str = ""

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"

    @property
    def jobs_endpoint(self) -> str:
        base = f"{self.origin}/wday/cxs/{self.tenant}/{self.site}/jobs"
        if not self.locale:
            return base
        return f"{base}?locale={quote(self.locale)}"

    @property
    def public_base(self) -> str:
        if self.locale:
            return f"{self.origin}/{self.locale}/{self.site}"
        return f"{self.origin}/{self.site}"

    def absolute_job_url(self, raw: dict) -> str:
        external = (raw.get("externalUrl") or "").strip()
        if external:
            return external
        path = (raw.get("externalPath") or "").strip()
        if not path:
            return ""
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.public_base}{path}"


def parse_board_url(raw: str) -> Board:
    """Derive tenant/site/locale from a public board URL."""
    raw = (raw or "").strip()
    if not raw:
        raise ConfigError("empty Workday board url")
    if "://" not in raw:
        raw = "https://" + raw
    parts = urlsplit(raw)
    host = (parts.hostname or "").lower()
    if not host:
        raise ConfigError(f"missing host in {raw!r}")

    labels = host.split(".")
    if len(labels) < 3:
        raise ConfigError(f"unexpected Workday host {host!r}")
    tenant = labels[0]

    segments = [s for s in parts.path.strip("/").split("/") if s]
    if not segments:
        raise ConfigError(f"could not derive Workday site from {raw!r}")

    locale = ""
    if len(segments) >= 2 and _LOCALE_RE.match(segments[0]):
        locale = segments[0][:2].lower() + "-" + segments[0][3:].upper()
        segments = segments[1:]

    return Board(
        scheme=(parts.scheme or "https").lower(),
        host=host,
        tenant=tenant,
        site=segments[-1],
        locale=locale,
    )


def looks_like_cloudflare_block(resp: requests.Response) -> bool:
    """Heuristics for an anti-bot challenge instead of real content."""
    body = (resp.text or "")[:4096].lower()
    if "attention required" in body:
        return True
    if "cloudflare" in body and "checking your browser" in body:
        return True
    if "/cdn-cgi/" in body:
        return True
    return resp.status_code in (403, 429)


class WorkdayFetcher(CompanyFetcher):
    """Fetches job listings from Workday career portals via their internal API."""

    source_name = "workday"
    label = "Workday"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._blocked_hosts: set[str] = set()
        self._blocked_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Blocked hosts
    # ------------------------------------------------------------------

    def is_blocked(self, host: str) -> bool:
        with self._blocked_lock:
            return host in self._blocked_hosts

    def _mark_blocked(self, host: str, status: int | None) -> BlockedHostError:
        with self._blocked_lock:
            first = host not in self._blocked_hosts
            self._blocked_hosts.add(host)
        if first:
            logger.warning("[%s] host %s blocked by Cloudflare (status=%s); "
                           "skipping remaining companies on it", self.name, host, status)
        return BlockedHostError(host, status=status)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def fetch_company(self, company: Company, deadline: Deadline) -> list[Lead]:
        board = parse_board_url(company.slug)
        if self.is_blocked(board.host):
            raise BlockedHostError(board.host)

        logger.debug("[%s] company=%r endpoint=%s", self.name, company.display_name,
                     board.jobs_endpoint)

        # Per-company session so the CSRF cookie stays with its tenant.
        with requests.Session() as session:
            session.headers.update(self.session.headers)
            return self._fetch_board(session, board, company, deadline)

    def _fetch_board(
        self, session: requests.Session, board: Board, company: Company, deadline: Deadline
    ) -> list[Lead]:
        csrf, boot_error = self._bootstrap(session, board, company.slug, deadline)

        leads: list[Lead] = []
        offset = 0
        total: int | None = None  # Only the first page reports the real total

        while True:
            if deadline.done:
                logger.warning("[%s] company=%r deadline reached at offset %d, returning %d leads",
                               self.name, company.display_name, offset, len(leads))
                break

            payload = {
                "appliedFacets": {},
                "limit": PAGE_SIZE,
                "offset": offset,
                "searchText": "",
            }
            resp = self._post_jobs(session, board, company.slug, payload, csrf, deadline)

            if resp.status_code >= 400:
                if boot_error is None:
                    if looks_like_cloudflare_block(resp):
                        raise self._mark_blocked(board.host, resp.status_code)
                    raise UpstreamError(
                        f"workday status {resp.status_code} "
                        f"body={truncate(resp.text, BODY_PREVIEW)!r}",
                        status=resp.status_code,
                    )

                # Not bootstrapped yet: bootstrap and retry exactly once.
                csrf, boot_error = self._bootstrap(session, board, company.slug, deadline)
                if boot_error is not None:
                    raise UpstreamError(
                        f"workday status {resp.status_code} (and bootstrap failed: {boot_error}) "
                        f"body={truncate(resp.text, BODY_PREVIEW)!r}",
                        status=resp.status_code,
                    )
                retry = self._post_jobs(session, board, company.slug, payload, csrf, deadline)
                if retry.status_code >= 400:
                    if looks_like_cloudflare_block(retry):
                        raise self._mark_blocked(board.host, retry.status_code)
                    raise UpstreamError(
                        f"workday status {retry.status_code} "
                        f"server={retry.headers.get('Server', '')!r} "
                        f"cf_ray={retry.headers.get('CF-RAY', '')!r} "
                        f"body={truncate(retry.text, BODY_PREVIEW)!r}",
                        status=retry.status_code,
                    )
                resp = retry

            data = decode_json(resp)
            if not isinstance(data, dict):
                break
            postings = data.get("jobPostings") or []
            if total is None:
                total = int(data.get("total") or 0)
                logger.debug("[%s] company=%r reports %d total jobs",
                             self.name, company.display_name, total)

            if not postings:
                break

            for raw in postings:
                lead = self._parse_job(board, company, raw)
                if lead:
                    leads.append(lead)

            offset += PAGE_SIZE
            if total and offset >= total:
                break
            if offset > MAX_OFFSET:
                logger.warning("[%s] company=%r hit offset ceiling %d",
                               self.name, company.display_name, MAX_OFFSET)
                break

        return leads

    def _post_jobs(
        self,
        session: requests.Session,
        board: Board,
        referer: str,
        payload: dict[str, Any],
        csrf: str,
        deadline: Deadline,
    ) -> requests.Response:
        """Call the Workday jobs API for a single page of results."""
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Origin": board.origin,
            "Referer": referer.rstrip("/"),
            "Accept-Language": board.locale or "en-US",
        }
        if csrf:
            headers[CSRF_HEADER] = csrf
        return self._request("POST", board.jobs_endpoint, deadline, session=session,
                             json=payload, headers=headers)

    def _bootstrap(
        self, session: requests.Session, board: Board, board_url: str, deadline: Deadline
    ) -> tuple[str, Exception | None]:
        """GET the board page to obtain the CSRF cookie.

        Returns (token, None) on success or ("", error) otherwise. Raises
        BlockedHostError when the page is an anti-bot challenge.
        """
        url = board_url if "://" in board_url else "https://" + board_url
        try:
            resp = self._request(
                "GET", url, deadline, session=session,
                headers={
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": board.locale or "en-US",
                },
            )
        except UpstreamError as exc:
            return "", exc

        token = session.cookies.get(CSRF_COOKIE) or resp.cookies.get(CSRF_COOKIE)
        if token:
            return token, None
        if looks_like_cloudflare_block(resp):
            raise self._mark_blocked(board.host, resp.status_code)
        return "", UpstreamError(
            f"workday bootstrap: missing {CSRF_COOKIE} cookie (status={resp.status_code})",
            status=resp.status_code,
        )

    def _parse_job(self, board: Board, company: Company, raw: dict) -> Lead | None:
        """Convert a Workday API job object into a Lead."""
        title = (raw.get("title") or "").strip()
        job_url = board.absolute_job_url(raw)
        if not title or not job_url:
            return None

        location = normalize_location(first_non_empty(raw.get("locationsText"), raw.get("location")))

        job_id = first_non_empty(
            raw.get("jobReqId"), raw.get("jobRequisitionId"), raw.get("jobRequisitionID"), raw.get("id")
        )
        if not job_id:
            job_id = hash_string("url:" + job_url)

        # Workday sometimes includes bullet fields with extra info (req id, job type)
        bullet_fields = raw.get("bulletFields") or []
        extra_info = " | ".join(str(b) for b in bullet_fields)

        return Lead(
            company=company.display_name or board.tenant,
            title=title,
            url=job_url,
            source=self.label,
            location=location,
            work_mode=infer_work_mode(location, title),
            vendor_job_id=vendor_source_id("workday", board.tenant, f"{board.site}:{job_id}"),
            description=extra_info,
            posted_at=parse_posted_date(first_non_empty(raw.get("postedOnDate"), raw.get("postedOn"))),
        )
