"""Tests for individual fetchers using mocked HTTP responses."""

import pytest
import requests
import responses
from responses import matchers

from jobhunt.config import Company
from jobhunt.deadline import Deadline, background
from jobhunt.errors import BlockedHostError, ConfigError
from jobhunt.ratelimit import HostLimiter
from jobhunt.scrapers import smartrecruiters as sr_module
from jobhunt.scrapers import workday as workday_module
from jobhunt.scrapers.greenhouse import GreenhouseFetcher
from jobhunt.scrapers.lever import LeverFetcher
from jobhunt.scrapers.smartrecruiters import SmartRecruitersFetcher
from jobhunt.scrapers.workday import WorkdayFetcher, parse_board_url

from conftest import make_config


# --- Greenhouse Fetcher Tests ---

@responses.activate
def test_greenhouse_fetcher_parses_api_response():
    """Greenhouse fetcher should parse the JSON API correctly."""
    responses.add(
        responses.GET,
        "https://boards-api.greenhouse.io/v1/boards/testco/jobs",
        json={
            "jobs": [
                {
                    "id": 12345,
                    "title": "Senior Backend Engineer",
                    "absolute_url": "https://boards.greenhouse.io/testco/jobs/12345",
                    "location": {"name": "Austin, TX"},
                    "content": "&lt;p&gt;Build APIs in &lt;b&gt;Python&lt;/b&gt;.&lt;/p&gt;",
                    "updated_at": "2026-01-15T10:00:00Z",
                },
                {
                    "id": 67890,
                    "title": "Platform Engineer",
                    "absolute_url": "https://boards.greenhouse.io/testco/jobs/67890",
                    "location": {"name": "Remote"},
                    "content": "",
                },
                {"id": 1, "title": "", "absolute_url": "https://x"},
            ]
        },
        status=200,
    )

    fetcher = GreenhouseFetcher(make_config(), [Company("testco", "TestCo")])
    result = fetcher.fetch(background())

    assert result.failures == {}
    assert len(result.leads) == 2
    first = result.leads[0]
    assert first.title == "Senior Backend Engineer"
    assert first.company == "TestCo"
    assert first.source == "Greenhouse"
    assert first.vendor_job_id == "greenhouse:testco:12345"
    assert "Python" in first.description
    assert "<" not in first.description
    assert first.posted_at.year == 2026
    assert result.leads[1].work_mode == "Remote"
    assert "content=true" in responses.calls[0].request.url


@responses.activate
def test_greenhouse_company_failure_is_isolated():
    """One failing board is recorded; the other still returns leads."""
    responses.add(responses.GET, "https://boards-api.greenhouse.io/v1/boards/gone/jobs",
                  json={"error": "not found"}, status=404)
    responses.add(responses.GET, "https://boards-api.greenhouse.io/v1/boards/ok/jobs",
                  json={"jobs": [{"id": 1, "title": "Engineer",
                                  "absolute_url": "https://boards.greenhouse.io/ok/jobs/1"}]},
                  status=200)

    fetcher = GreenhouseFetcher(make_config(), [Company("gone", "Gone Inc"), Company("ok")])
    result = fetcher.fetch(background())

    assert len(result.leads) == 1
    assert list(result.failures) == ["Gone Inc"]
    assert "404" in result.failures["Gone Inc"]


@responses.activate
def test_greenhouse_invalid_json_is_a_company_failure():
    responses.add(responses.GET, "https://boards-api.greenhouse.io/v1/boards/bad/jobs",
                  body="<html>maintenance</html>", status=200)
    result = GreenhouseFetcher(make_config(), [Company("bad")]).fetch(background())
    assert result.leads == []
    assert "invalid JSON" in result.failures["bad"]


def test_expired_deadline_skips_companies():
    deadline = Deadline(timeout=0)
    result = GreenhouseFetcher(make_config(), [Company("a"), Company("b")]).fetch(deadline)
    assert result.leads == []
    assert set(result.failures) == {"a", "b"}
    assert all(v.startswith("skipped") for v in result.failures.values())


@responses.activate
def test_requests_go_through_the_host_limiter():
    responses.add(responses.GET, "https://boards-api.greenhouse.io/v1/boards/a/jobs",
                  json={"jobs": []}, status=200)
    limiter = HostLimiter(rate=1000.0, burst=5)
    GreenhouseFetcher(make_config(), [Company("a")], limiter=limiter).fetch(background())
    assert limiter.hosts == ["boards-api.greenhouse.io"]


# --- Lever Fetcher Tests ---

@responses.activate
def test_lever_fetcher_hydrates_missing_location():
    responses.add(
        responses.GET,
        "https://api.lever.co/v0/postings/acme",
        json=[
            {
                "id": "abc-123",
                "text": "Backend Engineer",
                "hostedUrl": "https://jobs.lever.co/acme/abc-123",
                "categories": {"location": "Remote - US", "team": "Eng"},
                "description": "<div>Go and Python</div>",
                "createdAt": 1767225600000,
            },
            {
                "id": "def-456",
                "text": "Data  Engineer",
                "hostedUrl": "https://jobs.lever.co/acme/def-456",
                "categories": {},
            },
        ],
        status=200,
    )
    responses.add(
        responses.GET,
        "https://jobs.lever.co/acme/def-456",
        body='<div class="posting-categories"><div class="location">Austin, TX</div></div>',
        status=200,
    )

    fetcher = LeverFetcher(make_config(), [Company("acme", "Acme")])
    result = fetcher.fetch(background())

    assert [l.vendor_job_id for l in result.leads] == ["lever:acme:abc-123", "lever:acme:def-456"]
    first, second = result.leads
    assert first.location == "Remote - US"
    assert first.work_mode == "Remote"
    assert first.description == "Go and Python"
    assert first.posted_at.year == 2026
    assert second.title == "Data Engineer"
    assert second.location == "Austin, TX"
    assert len(responses.calls) == 2


@responses.activate
def test_lever_hydration_failure_keeps_lead():
    responses.add(responses.GET, "https://api.lever.co/v0/postings/acme",
                  json=[{"id": "x", "text": "Engineer",
                         "hostedUrl": "https://jobs.lever.co/acme/x"}],
                  status=200)
    responses.add(responses.GET, "https://jobs.lever.co/acme/x", status=500)

    result = LeverFetcher(make_config(), [Company("acme")]).fetch(background())
    assert len(result.leads) == 1
    assert result.leads[0].location == ""
    assert result.failures == {}


# --- SmartRecruiters Fetcher Tests ---

@responses.activate
def test_smartrecruiters_paginates_until_total():
    url = "https://api.smartrecruiters.com/v1/companies/visa/postings"
    responses.add(
        responses.GET, url,
        match=[matchers.query_param_matcher({"limit": "100", "offset": "0"})],
        json={
            "totalFound": 3,
            "content": [
                {"id": "111", "name": "Backend Engineer",
                 "location": {"city": "Austin", "region": "TX", "country": "us"},
                 "releasedDate": "2026-02-01T12:00:00.000Z"},
                {"id": "222", "name": "Data Engineer", "location": {"remote": True}},
            ],
        },
        status=200,
    )
    responses.add(
        responses.GET, url,
        match=[matchers.query_param_matcher({"limit": "100", "offset": "2"})],
        json={
            "totalFound": 3,
            "content": [
                {"uuid": "u-333", "name": "SRE",
                 "location": {"city": "Berlin", "country": "de", "remote": True}},
            ],
        },
        status=200,
    )

    fetcher = SmartRecruitersFetcher(make_config(), [Company("visa", "Visa")])
    result = fetcher.fetch(background())

    assert result.failures == {}
    assert len(responses.calls) == 2
    locations = [l.location for l in result.leads]
    assert locations == ["Austin, TX, us", "Remote", "Berlin, de (Remote)"]
    assert result.leads[0].url == "https://jobs.smartrecruiters.com/visa/111"
    assert result.leads[0].posted_at.month == 2
    assert result.leads[2].vendor_job_id == "smartrecruiters:visa:u-333"
    assert result.leads[1].work_mode == "Remote"


@responses.activate
def test_smartrecruiters_empty_page_stops():
    responses.add(responses.GET, "https://api.smartrecruiters.com/v1/companies/none/postings",
                  json={"totalFound": 0, "content": []}, status=200)
    result = SmartRecruitersFetcher(make_config(), [Company("none")]).fetch(background())
    assert result.leads == []
    assert len(responses.calls) == 1


@responses.activate
def test_smartrecruiters_stops_at_offset_ceiling():
    """A feed that never runs out of postings still terminates."""
    responses.add(
        responses.GET, "https://api.smartrecruiters.com/v1/companies/loop/postings",
        json={"totalFound": 0,
              "content": [{"id": str(i), "name": "Engineer"} for i in range(sr_module.PAGE_SIZE)]},
        status=200,
    )

    result = SmartRecruitersFetcher(make_config(), [Company("loop")]).fetch(background())

    assert result.failures == {}
    assert len(responses.calls) == sr_module.MAX_OFFSET // sr_module.PAGE_SIZE + 1


# --- Workday Fetcher Tests ---

BOARD = "https://acme.wd1.myworkdayjobs.com/en-US/External"
ENDPOINT = "https://acme.wd1.myworkdayjobs.com/wday/cxs/acme/External/jobs?locale=en-US"
CSRF_COOKIE = {"Set-Cookie": "CALYPSO_CSRF_TOKEN=tok-1; Path=/"}
CLOUDFLARE_PAGE = "<html><title>Attention Required! | Cloudflare</title></html>"


def _postings(start, count):
    return [
        {
            "title": f"Engineer {i}",
            "externalPath": f"/job/Austin-TX/Engineer-{i}_JR{i}",
            "locationsText": "Austin, TX",
            "postedOn": "Posted Today",
            "bulletFields": [f"JR{i}"],
            "jobReqId": f"JR{i}",
        }
        for i in range(start, start + count)
    ]


def _page_matcher(offset):
    return matchers.json_params_matcher(
        {"appliedFacets": {}, "limit": 50, "offset": offset, "searchText": ""}
    )


class TestParseBoardUrl:
    def test_with_locale(self):
        board = parse_board_url("acme.wd5.myworkdayjobs.com/en-us/Careers/")
        assert (board.tenant, board.site, board.locale) == ("acme", "Careers", "en-US")
        assert board.host == "acme.wd5.myworkdayjobs.com"
        assert board.jobs_endpoint.endswith("/wday/cxs/acme/Careers/jobs?locale=en-US")

    def test_without_locale(self):
        board = parse_board_url("https://acme.wd1.myworkdayjobs.com/External")
        assert board.locale == ""
        assert board.jobs_endpoint == "https://acme.wd1.myworkdayjobs.com/wday/cxs/acme/External/jobs"
        assert board.absolute_job_url({"externalPath": "job/1"}) == (
            "https://acme.wd1.myworkdayjobs.com/External/job/1"
        )

    def test_external_url_wins(self):
        board = parse_board_url(BOARD)
        raw = {"externalUrl": "https://elsewhere.example/job/1", "externalPath": "/job/1"}
        assert board.absolute_job_url(raw) == "https://elsewhere.example/job/1"
        assert board.absolute_job_url({}) == ""

    @pytest.mark.parametrize("raw", [
        "",
        "https://myworkdayjobs.com/External",
        "https://acme.wd1.myworkdayjobs.com/",
    ])
    def test_invalid(self, raw):
        with pytest.raises(ConfigError):
            parse_board_url(raw)


@responses.activate
def test_workday_paginates_with_csrf_token():
    responses.add(responses.GET, BOARD, body="<html>ok</html>", status=200, headers=CSRF_COOKIE)
    responses.add(
        responses.POST, ENDPOINT,
        match=[_page_matcher(0),
               matchers.header_matcher({"x-calypso-csrf-token": "tok-1"})],
        json={"total": 60, "jobPostings": _postings(0, 50)},
        status=200,
    )
    responses.add(
        responses.POST, ENDPOINT,
        match=[_page_matcher(50)],
        json={"total": 0, "jobPostings": _postings(50, 10)},
        status=200,
    )

    fetcher = WorkdayFetcher(make_config(), [Company(BOARD, "Acme")])
    result = fetcher.fetch(background())

    assert result.failures == {}
    assert len(result.leads) == 60
    lead = result.leads[0]
    assert lead.company == "Acme"
    assert lead.source == "Workday"
    assert lead.url == "https://acme.wd1.myworkdayjobs.com/en-US/External/job/Austin-TX/Engineer-0_JR0"
    assert lead.vendor_job_id == "workday:acme:External:JR0"
    assert lead.description == "JR0"
    assert lead.posted_at is not None
    assert len(responses.calls) == 3


@responses.activate
def test_workday_retries_once_after_bootstrap():
    """A tenant that needs the CSRF cookie gets one bootstrap-and-retry."""
    responses.add(responses.GET, BOARD, body="<html>no cookie yet</html>", status=200)
    responses.add(responses.GET, BOARD, body="<html>ok</html>", status=200, headers=CSRF_COOKIE)
    responses.add(responses.POST, ENDPOINT, json={"error": "csrf"}, status=422)
    responses.add(responses.POST, ENDPOINT,
                  json={"total": 1, "jobPostings": _postings(0, 1)}, status=200)

    result = WorkdayFetcher(make_config(), [Company(BOARD, "Acme")]).fetch(background())

    assert result.failures == {}
    assert len(result.leads) == 1
    methods = [c.request.method for c in responses.calls]
    assert methods == ["GET", "POST", "GET", "POST"]
    assert responses.calls[3].request.headers["x-calypso-csrf-token"] == "tok-1"


@responses.activate
def test_workday_error_after_successful_bootstrap_fails_company():
    responses.add(responses.GET, BOARD, body="<html>ok</html>", status=200, headers=CSRF_COOKIE)
    responses.add(responses.POST, ENDPOINT, body="internal error", status=500)

    result = WorkdayFetcher(make_config(), [Company(BOARD, "Acme")]).fetch(background())

    assert result.leads == []
    assert "workday status 500" in result.failures["Acme"]
    assert len(responses.calls) == 2


@responses.activate
def test_workday_cloudflare_block_skips_rest_of_host():
    config = make_config()
    config.polling.workers = 1
    other = "https://acme.wd1.myworkdayjobs.com/Internal"
    responses.add(responses.GET, BOARD, body=CLOUDFLARE_PAGE, status=403)

    fetcher = WorkdayFetcher(config, [Company(BOARD, "Acme"), Company(other, "Acme Internal")])
    result = fetcher.fetch(background())

    assert result.leads == []
    assert set(result.failures) == {"Acme", "Acme Internal"}
    assert all("blocked" in v for v in result.failures.values())
    assert fetcher.is_blocked("acme.wd1.myworkdayjobs.com")
    assert len(responses.calls) == 1


@responses.activate
def test_workday_block_raised_from_fetch_company():
    responses.add(responses.GET, BOARD, body=CLOUDFLARE_PAGE, status=403)
    fetcher = WorkdayFetcher(make_config(), [])
    with pytest.raises(BlockedHostError):
        fetcher.fetch_company(Company(BOARD), background())


@responses.activate
def test_workday_stops_at_offset_ceiling():
    responses.add(responses.GET, BOARD, body="<html>ok</html>", status=200, headers=CSRF_COOKIE)
    responses.add(responses.POST, ENDPOINT,
                  json={"total": 0, "jobPostings": _postings(0, 50)}, status=200)

    result = WorkdayFetcher(make_config(), [Company(BOARD, "Acme")]).fetch(background())

    assert result.failures == {}
    posts = [c for c in responses.calls if c.request.method == "POST"]
    assert len(posts) == workday_module.MAX_OFFSET // workday_module.PAGE_SIZE + 1


@responses.activate
def test_workday_closes_company_session(monkeypatch):
    """Each company's cookie session is closed once the board is fetched."""
    closed = []

    class TrackingSession(requests.Session):
        def close(self):
            closed.append(self)
            super().close()

    responses.add(responses.GET, BOARD, body="<html>ok</html>", status=200, headers=CSRF_COOKIE)
    responses.add(responses.POST, ENDPOINT,
                  json={"total": 1, "jobPostings": _postings(0, 1)}, status=200)
    fetcher = WorkdayFetcher(make_config(), [Company(BOARD, "Acme")])
    monkeypatch.setattr(workday_module.requests, "Session", TrackingSession)

    result = fetcher.fetch(background())

    assert len(result.leads) == 1
    assert len(closed) == 1
