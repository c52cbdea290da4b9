"""Base classes for all lead fetchers."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any

import requests

from jobhunt.config import Company, PipelineConfig
from jobhunt.deadline import Deadline
from jobhunt.errors import BlockedHostError, DeadlineExceeded, DecodeError, UpstreamError
from jobhunt.models import Lead, ScrapeResult
from jobhunt.ratelimit import HostLimiter

logger = logging.getLogger(__name__)


class BaseFetcher(ABC):
    """Base class that every source fetcher extends.

    Provides the shared HTTP plumbing (session, per-host rate limiting,
    deadline-clamped timeouts, error mapping) so individual fetchers only
    implement ``fetch()``.
    """

    #: Stable source identifier, used for logging and timeout lookup.
    source_name: str = ""
    #: Human label stored on each job row.
    label: str = ""

    def __init__(
        self,
        config: PipelineConfig,
        limiter: HostLimiter | None = None,
        session: requests.Session | None = None,
    ):
        self.config = config
        self.limiter = limiter
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": config.user_agent})

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @abstractmethod
    def fetch(self, deadline: Deadline) -> ScrapeResult:
        """Fetch leads from this source.

        Must return partial results when the deadline ends rather than
        raising. Raising means the whole source failed.
        """
        ...

    @property
    def name(self) -> str:
        return self.source_name

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        deadline: Deadline,
        session: requests.Session | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Rate-limited request bounded by ``deadline``. No status check."""
        deadline.check()
        if self.limiter is not None:
            self.limiter.wait_url(url, deadline)
        kwargs.setdefault(
            "timeout", deadline.timeout_for(self.config.polling.request_timeout_seconds)
        )
        try:
            return (session or self.session).request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise UpstreamError(f"{method} {url} failed: {exc}") from exc

    def _checked(self, method: str, url: str, deadline: Deadline, **kwargs: Any) -> requests.Response:
        resp = self._request(method, url, deadline, **kwargs)
        if resp.status_code >= 400:
            raise UpstreamError(
                f"{method} {url} returned {resp.status_code} body={resp.text[:240]!r}",
                status=resp.status_code,
            )
        return resp

    def _get(self, url: str, deadline: Deadline, **kwargs: Any) -> requests.Response:
        return self._checked("GET", url, deadline, **kwargs)

    def _get_json(self, url: str, deadline: Deadline, **kwargs: Any) -> Any:
        resp = self._get(url, deadline, **kwargs)
        return decode_json(resp)


def decode_json(resp: requests.Response) -> Any:
    """Parse a JSON body, raising DecodeError with a body preview on failure."""
    try:
        return resp.json()
    except ValueError as exc:
        raise DecodeError(
            f"invalid JSON from {resp.url}: {exc}", body=resp.text, status=resp.status_code
        ) from exc


class CompanyFetcher(BaseFetcher):
    """A fetcher that polls a list of companies with a bounded worker pool.

    Each company runs under its own child deadline so one slow tenant
    cannot use up the whole source budget. A company that fails is
    recorded in ``ScrapeResult.failures``; the others still return leads.
    """

    def __init__(
        self,
        config: PipelineConfig,
        companies: list[Company],
        limiter: HostLimiter | None = None,
        session: requests.Session | None = None,
    ):
        super().__init__(config, limiter=limiter, session=session)
        self.companies = list(companies)

    @abstractmethod
    def fetch_company(self, company: Company, deadline: Deadline) -> list[Lead]:
        """Fetch one company's postings. Raise on failure."""
        ...

    def fetch(self, deadline: Deadline) -> ScrapeResult:
        result = ScrapeResult(source=self.name)
        if not self.companies:
            return result

        workers = max(1, min(self.config.polling.workers, len(self.companies)))
        company_timeout = self.config.polling.company_timeout(self.name)
        started = time.monotonic()

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=self.name) as pool:
            futures = {
                pool.submit(self._run_company, company, deadline, company_timeout): company
                for company in self.companies
            }
            for future in as_completed(futures):
                company = futures[future]
                label = company.display_name
                try:
                    leads = future.result()
                except DeadlineExceeded as exc:
                    result.failures[label] = f"skipped: {exc}"
                    logger.warning("[%s] company=%r not fetched: %s", self.name, label, exc)
                except BlockedHostError as exc:
                    result.failures[label] = str(exc)
                    logger.warning("[%s] company=%r %s; skipping", self.name, label, exc)
                except Exception as exc:
                    result.failures[label] = str(exc)
                    logger.error("[%s] company=%r slug=%r err=%s",
                                 self.name, label, company.slug, exc)
                else:
                    result.leads.extend(leads)

        logger.info(
            "[%s] Processed: %d leads from %d companies (%d failed) in %.1fs",
            self.name, len(result.leads), len(self.companies), len(result.failures),
            time.monotonic() - started,
        )
        return result

    def _run_company(self, company: Company, parent: Deadline, timeout: float) -> list[Lead]:
        # The parent may have ended while this company sat in the queue.
        parent.check()
        return self.fetch_company(company, parent.child(timeout))
