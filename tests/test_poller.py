"""Tests for the poll orchestrator and its status record."""

import time
from dataclasses import FrozenInstanceError
from unittest.mock import MagicMock

import pytest
import responses

from jobhunt.config import Company, EmailConfig, SourceConfig
from jobhunt.credentials import StaticSecretStore
from jobhunt.errors import UpstreamError
from jobhunt.events import JOB_CREATED, POLL_FINISHED, EventHub
from jobhunt.models import ScrapeResult
from jobhunt.poller import (
    FetchOutcome,
    PollReport,
    Poller,
    PollStatus,
    StatusStore,
    build_fetchers,
)
from jobhunt.ratelimit import HostLimiter
from jobhunt.scrapers import EmailFetcher, GreenhouseFetcher, LeverFetcher
from jobhunt.scrapers.base import BaseFetcher
from jobhunt.storage import JobStore

from conftest import make_config, make_lead


class FakeFetcher(BaseFetcher):
    """Returns canned leads, or raises, without touching the network."""

    def __init__(self, config, name, leads=None, error=None):
        super().__init__(config)
        self.source_name = name
        self.leads = leads or []
        self.error = error
        self.deadlines = []

    def fetch(self, deadline):
        self.deadlines.append(deadline)
        if self.error is not None:
            raise self.error
        return ScrapeResult(source=self.name, leads=list(self.leads),
                            failures={"Other Co": "boom"})


def _wait_until(predicate, timeout=5.0):
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.01)
    return False


# ── Status ──────────────────────────────────────────────────────────────────


class TestStatusStore:
    def test_begin_is_exclusive(self):
        status = StatusStore()
        assert status.try_begin() is True
        assert status.try_begin() is False
        snap = status.snapshot()
        assert snap.running and snap.last_run_at is not None

    def test_success_then_failure(self):
        status = StatusStore()
        status.try_begin()
        ok = status.finish(3)
        assert not ok.running
        assert ok.last_ok_at is not None
        assert ok.last_added == 3
        assert ok.last_error == ""

        status.try_begin()
        failed = status.finish(0, error="db down")
        assert failed.last_error == "db down"
        assert failed.last_ok_at == ok.last_ok_at
        assert failed.last_run_at >= ok.last_run_at

        status.try_begin()
        again = status.finish(1)
        assert again.last_error == ""
        assert again.last_ok_at >= ok.last_ok_at

    def test_snapshot_is_immutable(self):
        snap = StatusStore().snapshot()
        with pytest.raises(FrozenInstanceError):
            snap.running = True
        assert PollStatus().to_dict() == {
            "running": False,
            "last_run_at": None,
            "last_ok_at": None,
            "last_error": "",
            "last_added": 0,
        }


def test_poll_report_aggregates_outcomes():
    report = PollReport(outcomes=[
        FetchOutcome(source="lever", leads=[make_lead()]),
        FetchOutcome(source="workday", error="UpstreamError: 503"),
    ])
    assert report.failed_sources == ["workday"]
    assert report.total_leads == 1
    assert report.added == 0


# ── Fetcher construction ────────────────────────────────────────────────────


def test_build_fetchers_for_enabled_sources():
    config = make_config()
    config.sources.greenhouse = SourceConfig(enabled=True, companies=[Company("stripe")])
    config.sources.lever = SourceConfig(enabled=True, companies=[])
    config.sources.workday = SourceConfig(enabled=False, companies=[Company("x")])
    config.email = EmailConfig(enabled=True, imap_host="imap.example.com", username="me")
    limiter = HostLimiter()

    fetchers = build_fetchers(config, limiter, StaticSecretStore())
    assert [type(f) for f in fetchers] == [EmailFetcher, GreenhouseFetcher]
    assert all(f.limiter is limiter for f in fetchers)

    only = build_fetchers(config, limiter, StaticSecretStore(), only="Greenhouse")
    assert [f.name for f in only] == ["greenhouse"]


def test_poller_builds_fresh_fetchers_each_cycle(store):
    config = make_config()
    config.sources.lever = SourceConfig(enabled=True, companies=[Company("acme")])
    poller = Poller(config, store, secrets=StaticSecretStore())
    first, second = poller.build_fetchers(), poller.build_fetchers()
    assert isinstance(first[0], LeverFetcher)
    assert first[0] is not second[0]
    assert first[0].limiter is not second[0].limiter


# ── Poll cycles ─────────────────────────────────────────────────────────────


def test_failing_source_does_not_block_others(config, store):
    good = FakeFetcher(config, "lever", leads=[make_lead()])
    bad = FakeFetcher(config, "workday", error=UpstreamError("503 from host"))
    poller = Poller(config, store, fetchers=[bad, good])

    report = poller.run()

    assert report.added == 1
    assert report.failed_sources == ["workday"]
    outcome = next(o for o in report.outcomes if o.source == "workday")
    assert outcome.error == "UpstreamError: 503 from host"
    lever = next(o for o in report.outcomes if o.source == "lever")
    assert lever.failures == {"Other Co": "boom"}
    assert store.count_jobs() == 1

    status = poller.status.snapshot()
    assert status.last_error == ""
    assert status.last_added == 1
    assert status.last_ok_at is not None


def test_same_lead_in_two_cycles_is_added_once(config, store):
    poller = Poller(config, store, fetchers=[FakeFetcher(config, "lever", leads=[make_lead()])])

    assert poller.run().added == 1
    assert poller.run().added == 0
    assert store.count_jobs() == 1
    assert poller.status.snapshot().last_added == 0


def test_run_while_running_is_a_no_op(config, store):
    fetcher = FakeFetcher(config, "lever", leads=[make_lead()])
    poller = Poller(config, store, fetchers=[fetcher])
    poller.status.try_begin()

    assert poller.run() is None
    assert poller.run_in_background() is False
    assert fetcher.deadlines == []


def test_each_source_gets_its_own_deadline(config, store):
    config.polling.source_timeouts["lever"] = 5.0
    fetcher = FakeFetcher(config, "lever")
    Poller(config, store, fetchers=[fetcher]).run()

    deadline = fetcher.deadlines[0]
    assert 0 < deadline.remaining() <= 5.0


def test_stop_cancels_in_flight_deadlines(config, store):
    fetcher = FakeFetcher(config, "lever")
    poller = Poller(config, store, fetchers=[fetcher])
    poller.run()
    poller.stop()
    assert fetcher.deadlines[0].cancelled


def test_unreachable_store_fails_the_poll(config, tmp_path):
    store = JobStore(tmp_path / "jobs.db")
    fetcher = FakeFetcher(config, "lever", leads=[make_lead()])
    poller = Poller(config, store, fetchers=[fetcher])
    poller.run()
    ok_at = poller.status.snapshot().last_ok_at

    store.close()
    report = poller.run()

    assert "unavailable" in report.error
    status = poller.status.snapshot()
    assert not status.running
    assert "unavailable" in status.last_error
    assert status.last_ok_at == ok_at
    assert status.last_added == 0
    assert len(fetcher.deadlines) == 1


def test_unexpected_error_is_recorded_and_raised(config):
    store = MagicMock()
    store.ping.side_effect = RuntimeError("kaboom")
    poller = Poller(config, store, fetchers=[])

    with pytest.raises(RuntimeError):
        poller.run()

    status = poller.status.snapshot()
    assert not status.running
    assert status.last_error == "unexpected error: kaboom"


def test_events_are_published(config, store):
    hub = EventHub()
    events = hub.subscribe()
    leads = [
        make_lead(),
        make_lead(vendor_job_id="lever:acme:456", url="https://jobs.lever.co/acme/456"),
        make_lead(title="Chef"),
    ]
    poller = Poller(config, store, hub=hub, fetchers=[FakeFetcher(config, "lever", leads=leads)])
    poller.run()

    received = [events.get_nowait() for _ in range(events.qsize())]
    assert [e.type for e in received] == [JOB_CREATED, JOB_CREATED, POLL_FINISHED]
    assert received[-1].data == {"added": 2, "leads": 3, "failed_sources": []}


def test_no_sources_still_finishes(config, store):
    poller = Poller(config, store, fetchers=[])
    report = poller.run()
    assert report.outcomes == []
    assert report.added == 0
    assert poller.status.snapshot().last_ok_at is not None


# ── Background and interval polling ─────────────────────────────────────────


def test_run_in_background(config, store):
    poller = Poller(config, store, fetchers=[FakeFetcher(config, "lever", leads=[make_lead()])])
    assert poller.run_in_background() is True
    assert _wait_until(lambda: not poller.status.snapshot().running)
    assert store.count_jobs() == 1


def test_start_and_stop_interval_loop(config, store):
    fetcher = FakeFetcher(config, "lever", leads=[make_lead()])
    poller = Poller(config, store, fetchers=[fetcher])

    poller.start(interval=60)
    assert _wait_until(lambda: poller.status.snapshot().last_ok_at is not None)
    poller.stop(timeout=5)

    assert len(fetcher.deadlines) == 1
    assert store.count_jobs() == 1


@responses.activate
def test_run_after_stop_still_fetches(config, store):
    """Stopping the interval loop must not cancel later on-demand polls."""
    responses.add(responses.GET, "https://boards-api.greenhouse.io/v1/boards/acme/jobs",
                  json={"jobs": [{"id": 7, "title": "Backend Engineer",
                                  "absolute_url": "https://boards.greenhouse.io/acme/jobs/7",
                                  "location": {"name": "Remote"}}]})
    fetcher = GreenhouseFetcher(config, [Company("acme", "Acme")])
    poller = Poller(config, store, fetchers=[fetcher])

    poller.start(interval=3600)
    assert _wait_until(lambda: poller.status.snapshot().last_ok_at is not None)
    poller.stop(timeout=5)

    report = poller.run()

    greenhouse = report.outcomes[0]
    assert greenhouse.failures == {}
    assert len(greenhouse.leads) == 1
    assert poller.status.snapshot().last_error == ""
