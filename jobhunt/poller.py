"""Poll orchestrator: runs all fetchers and hands their leads to the processor.

One poll cycle:
  1. Check the store is reachable (the only cycle-level failure)
  2. Build fetchers for every enabled source
  3. Run them concurrently, each under its own source deadline; every
     fetcher yields a FetchOutcome, never an exception
  4. Process all leads sequentially, in the order sources finished
  5. Record the outcome on the status store and publish events

At most one cycle runs at a time. Asking for a poll while one is running
is a no-op that reports "already running".
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable

from jobhunt.config import PipelineConfig
from jobhunt.credentials import EnvSecretStore, SecretStore
from jobhunt.deadline import Deadline
from jobhunt.enrichment import DomainFinder
from jobhunt.errors import StorageUnavailable
from jobhunt.events import JOB_CREATED, POLL_FINISHED, Event, EventHub
from jobhunt.models import Lead
from jobhunt.processor import LeadProcessor, ProcessSummary
from jobhunt.ratelimit import HostLimiter
from jobhunt.scrapers.base import BaseFetcher, CompanyFetcher
from jobhunt.scrapers.email_alerts import EmailFetcher
from jobhunt.scrapers.greenhouse import GreenhouseFetcher
from jobhunt.scrapers.lever import LeverFetcher
from jobhunt.scrapers.smartrecruiters import SmartRecruitersFetcher
from jobhunt.scrapers.workday import WorkdayFetcher
from jobhunt.storage import JobStore

logger = logging.getLogger(__name__)

# Map vendor names (config keys) to fetcher classes
FETCHER_REGISTRY: dict[str, type[CompanyFetcher]] = {
    "greenhouse": GreenhouseFetcher,
    "lever": LeverFetcher,
    "workday": WorkdayFetcher,
    "smartrecruiters": SmartRecruitersFetcher,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Status ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PollStatus:
    """Immutable snapshot of the poller's state."""

    running: bool = False
    last_run_at: datetime | None = None
    last_ok_at: datetime | None = None
    last_error: str = ""
    last_added: int = 0

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_ok_at": self.last_ok_at.isoformat() if self.last_ok_at else None,
            "last_error": self.last_error,
            "last_added": self.last_added,
        }


class StatusStore:
    """Holds the current PollStatus; every change swaps in a new snapshot."""

    def __init__(self, initial: PollStatus | None = None):
        self._status = initial or PollStatus()
        self._lock = threading.Lock()

    def snapshot(self) -> PollStatus:
        with self._lock:
            return self._status

    def try_begin(self) -> bool:
        """Mark a poll as running. False if one already is."""
        with self._lock:
            if self._status.running:
                return False
            self._status = replace(self._status, running=True, last_run_at=_utcnow())
            return True

    def finish(self, added: int, error: str = "") -> PollStatus:
        """Record the end of a poll.

        A failure sets last_error and leaves last_ok_at alone; a success
        clears last_error and moves last_ok_at.
        """
        now = _utcnow()
        with self._lock:
            current = self._status
            if error:
                self._status = replace(
                    current, running=False, last_run_at=now, last_added=added, last_error=error
                )
            else:
                self._status = replace(
                    current, running=False, last_run_at=now, last_added=added,
                    last_error="", last_ok_at=now,
                )
            return self._status


# ── Reports ─────────────────────────────────────────────────────────────────

@dataclass
class FetchOutcome:
    """The result of running one fetcher: leads, or an error, never both raised."""

    source: str
    leads: list[Lead] = field(default_factory=list)
    error: str = ""
    elapsed: float = 0.0
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass
class PollReport:
    """Everything one poll cycle did."""

    outcomes: list[FetchOutcome] = field(default_factory=list)
    summary: ProcessSummary = field(default_factory=ProcessSummary)
    error: str = ""
    started_at: datetime = field(default_factory=_utcnow)
    elapsed: float = 0.0

    @property
    def added(self) -> int:
        return self.summary.added

    @property
    def failed_sources(self) -> list[str]:
        return [o.source for o in self.outcomes if not o.ok]

    @property
    def total_leads(self) -> int:
        return sum(len(o.leads) for o in self.outcomes)


# ── Fetcher construction ────────────────────────────────────────────────────

def build_fetchers(
    config: PipelineConfig,
    limiter: HostLimiter,
    secrets: SecretStore,
    only: str | None = None,
) -> list[BaseFetcher]:
    """Instantiate a fetcher for the mailbox and each enabled vendor."""
    fetchers: list[BaseFetcher] = []

    if config.email.enabled:
        fetchers.append(EmailFetcher(config, secrets, limiter=limiter))

    for vendor in config.enabled_vendors:
        source = config.sources.get(vendor)
        if not source.companies:
            logger.warning("Source %s is enabled but lists no companies; skipping", vendor)
            continue
        fetcher_cls = FETCHER_REGISTRY[vendor]
        fetchers.append(fetcher_cls(config, source.companies, limiter=limiter))

    if only:
        fetchers = [f for f in fetchers if f.name == only.lower()]
    return fetchers


# ── Poller ──────────────────────────────────────────────────────────────────

class Poller:
    """Runs poll cycles on demand or on an interval."""

    def __init__(
        self,
        config: PipelineConfig,
        store: JobStore,
        status: StatusStore | None = None,
        hub: EventHub | None = None,
        secrets: SecretStore | None = None,
        domain_finder: Callable[[str], str] | None = None,
        fetchers: list[BaseFetcher] | None = None,
        only: str | None = None,
    ):
        self.config = config
        self.store = store
        self.status = status or StatusStore()
        self.hub = hub or EventHub()
        self.secrets = secrets
        self.only = only
        self._fixed_fetchers = fetchers

        if domain_finder is None and config.enrichment.enabled:
            domain_finder = DomainFinder(
                timeout=config.enrichment.search_timeout_seconds,
                user_agent=config.user_agent,
            )
        self.domain_finder = domain_finder

        self._root = Deadline()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def build_fetchers(self) -> list[BaseFetcher]:
        if self._fixed_fetchers is not None:
            return list(self._fixed_fetchers)
        if self.secrets is None:
            self.secrets = EnvSecretStore()
        limiter = HostLimiter(self.config.polling.rate_per_second, self.config.polling.burst)
        return build_fetchers(self.config, limiter, self.secrets, only=self.only)

    def poll_once(self, deadline: Deadline | None = None) -> PollReport:
        """Run every fetcher, then process their leads.

        Raises StorageUnavailable if the store cannot be reached; every
        other failure is reported per source in the returned PollReport.
        """
        report = PollReport()
        started = time.monotonic()
        cycle = (deadline or self._root).child(self.config.polling.poll_timeout_seconds)

        self.store.ping()

        fetchers = self.build_fetchers()
        if not fetchers:
            logger.info("[poll] no sources enabled")
        else:
            logger.info("[poll] starting %d fetchers: %s",
                        len(fetchers), ", ".join(f.name for f in fetchers))
            report.outcomes = self._run_fetchers(fetchers, cycle)

        for outcome in report.outcomes:
            if outcome.ok:
                logger.info("[poll] got source=%s leads=%d failed_companies=%d (%.1fs)",
                            outcome.source, len(outcome.leads), len(outcome.failures),
                            outcome.elapsed)
            else:
                logger.error("[poll] source=%s failed: %s", outcome.source, outcome.error)

        processor = LeadProcessor(
            self.config,
            self.store,
            domain_finder=self.domain_finder,
            on_new_job=self._publish_job_created,
        )
        report.summary = processor.process(
            itertools.chain.from_iterable(o.leads for o in report.outcomes)
        )
        report.elapsed = time.monotonic() - started

        self.hub.publish(Event(POLL_FINISHED, {
            "added": report.added,
            "leads": report.total_leads,
            "failed_sources": report.failed_sources,
        }))
        logger.info("[poll] ok added=%d leads=%d failed_sources=%s in %.1fs",
                    report.added, report.total_leads, report.failed_sources or "none",
                    report.elapsed)
        return report

    def run(self, deadline: Deadline | None = None) -> PollReport | None:
        """Run one guarded poll. Returns None if a poll is already running."""
        if not self.status.try_begin():
            logger.info("[poll] already running; skipping")
            return None
        return self._execute(deadline)

    def run_in_background(self) -> bool:
        """Start a poll on a daemon thread. False if one is already running."""
        if not self.status.try_begin():
            logger.info("[poll] already running; not starting another")
            return False
        thread = threading.Thread(target=self._execute_guarded, name="jobhunt-poll", daemon=True)
        thread.start()
        return True

    def start(self, interval: float | None = None) -> None:
        """Poll now and then every ``interval`` seconds until stop()."""
        if self._thread is not None and self._thread.is_alive():
            return
        interval = interval if interval is not None else self.config.polling.interval_seconds
        self._stop.clear()
        self._root = Deadline()
        self._thread = threading.Thread(
            target=self._loop, args=(interval,), name="jobhunt-poller", daemon=True
        )
        self._thread.start()
        logger.info("[poll] polling every %.0fs", interval)

    def stop(self, timeout: float | None = None) -> None:
        """Stop the interval loop and cancel a poll in progress."""
        self._stop.set()
        self._root.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        # Later on-demand polls need a live root.
        self._root = Deadline()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute(self, deadline: Deadline | None = None) -> PollReport:
        """Body of a poll once the running flag is held. Always clears it."""
        try:
            report = self.poll_once(deadline)
        except StorageUnavailable as exc:
            logger.error("[poll] error: %s", exc)
            self.status.finish(0, error=str(exc))
            return PollReport(error=str(exc))
        except Exception as exc:
            self.status.finish(0, error=f"unexpected error: {exc}")
            raise
        self.status.finish(report.added)
        return report

    def _execute_guarded(self) -> None:
        try:
            self._execute()
        except Exception:
            logger.exception("[poll] background poll crashed")

    def _loop(self, interval: float) -> None:
        while not self._stop.is_set():
            if self.status.try_begin():
                self._execute_guarded()
            else:
                logger.info("[poll] previous poll still running; skipping tick")
            if self._stop.wait(interval):
                break

    def _run_fetchers(self, fetchers: list[BaseFetcher], cycle: Deadline) -> list[FetchOutcome]:
        outcomes: list[FetchOutcome] = []
        with ThreadPoolExecutor(max_workers=len(fetchers), thread_name_prefix="fetch") as pool:
            futures = [pool.submit(self._run_fetcher, f, cycle) for f in fetchers]
            for future in as_completed(futures):
                outcomes.append(future.result())
        return outcomes

    def _run_fetcher(self, fetcher: BaseFetcher, cycle: Deadline) -> FetchOutcome:
        """Run one fetcher under its source deadline, converting errors to an outcome."""
        deadline = cycle.child(self.config.polling.source_timeout(fetcher.name))
        started = time.monotonic()
        logger.info("[%s] Running...", fetcher.name)
        try:
            result = fetcher.fetch(deadline)
        except Exception as exc:
            return FetchOutcome(
                source=fetcher.name,
                error=f"{type(exc).__name__}: {exc}",
                elapsed=time.monotonic() - started,
            )
        return FetchOutcome(
            source=fetcher.name,
            leads=list(result.leads),
            failures=dict(result.failures),
            elapsed=time.monotonic() - started,
        )

    def _publish_job_created(self) -> None:
        self.hub.publish(Event(JOB_CREATED))
