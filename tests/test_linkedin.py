"""Tests for the LinkedIn job-alert parser."""

from jobhunt.scrapers.linkedin import (
    is_better_title,
    linkedin_source_id,
    looks_like_job_alert,
    parse_job_alert_html,
    strip_badges,
    unwrap_redirect,
)

ALERT_HTML = """
<html><body>
<table><tr>
  <td><a href="https://www.linkedin.com/comm/jobs/view/4011111111/?trackingId=a&amp;refId=b">
      <img src="https://media-exp1.licdn.com/dms/image/logo1.png" alt="Acme"></a></td>
  <td>
    <a href="https://www.linkedin.com/comm/jobs/view/4011111111/?trk=title">Senior Backend Engineer Actively recruiting</a>
    <p>Acme Corp · Austin, TX (Hybrid)</p>
    <p>$150K - $180K / year</p>
    <p>3 connections work here</p>
    <a href="https://www.linkedin.com/comm/jobs/view/4011111111/">View job</a>
  </td>
</tr></table>
<table><tr><td>
  <a href="https://www.linkedin.com/comm/jobs/view/4022222222/"><img data-src="https://media-exp1.licdn.com/dms/image/logo2.png"></a>
  <a href="https://www.linkedin.com/comm/jobs/view/4022222222/">Data Engineer</a>
  <p>Widget Inc · Remote</p>
</td></tr></table>
<table><tr><td>
  <a href="https://www.linkedin.com/comm/jobs/view/4033333333/"><img src="https://media-exp1.licdn.com/x.png"></a>
</td></tr></table>
<a href="https://www.linkedin.com/comm/jobs/alerts">Manage job alerts</a>
</body></html>
"""


def test_parse_job_alert_merges_card_anchors():
    jobs = parse_job_alert_html(ALERT_HTML)

    assert [j.source_id for j in jobs] == ["linkedin:4011111111", "linkedin:4022222222"]
    first, second = jobs
    assert first.url == "https://www.linkedin.com/jobs/view/4011111111"
    assert first.title == "Senior Backend Engineer"
    assert first.company == "Acme Corp"
    assert first.location == "Austin, TX (Hybrid)"
    assert first.salary == "$150K - $180K / year"
    assert first.logo_url == "https://media-exp1.licdn.com/dms/image/logo1.png"

    assert second.title == "Data Engineer"
    assert second.company == "Widget Inc"
    assert second.location == "Remote"
    assert second.salary == ""
    assert second.logo_url == "https://media-exp1.licdn.com/dms/image/logo2.png"


def test_parse_job_alert_empty():
    assert parse_job_alert_html("") == []
    assert parse_job_alert_html("<p>nothing here</p>") == []


def test_looks_like_job_alert():
    body = '<a href="https://www.linkedin.com/comm/jobs/view/1">x</a>'
    assert looks_like_job_alert("Your job alert for python", body)
    assert looks_like_job_alert("New jobs on LinkedIn", body)
    assert not looks_like_job_alert("Weekly newsletter", body)
    assert not looks_like_job_alert("Your job alert", "<p>no links</p>")


def test_unwrap_redirect():
    wrapped = "https://click.example.com/r?url=https%3A%2F%2Fwww.linkedin.com%2Fjobs%2Fview%2F5"
    assert unwrap_redirect(wrapped) == "https://www.linkedin.com/jobs/view/5"
    google = "https://www.google.com/url?q=https://www.linkedin.com/jobs/view/6&sa=D"
    assert unwrap_redirect(google) == "https://www.linkedin.com/jobs/view/6"
    plain = "https://www.linkedin.com/jobs/view/7"
    assert unwrap_redirect(plain) == plain


def test_strip_badges_and_titles():
    assert strip_badges("Staff Engineer Promoted") == "Staff Engineer"
    assert strip_badges("Easy Apply") == ""
    assert strip_badges("View job") == ""
    assert strip_badges("12 alumni work here") == ""

    assert is_better_title("Backend Engineer", "")
    assert is_better_title("SRE Lead", "SRE Lead at Acme Austin TX")
    assert not is_better_title("SRE", "")
    assert not is_better_title("x" * 121, "")
    assert not is_better_title("Longer Title Here", "Short One")


def test_linkedin_source_id():
    assert linkedin_source_id("https://www.linkedin.com/jobs/view/42") == "linkedin:42"
    assert linkedin_source_id("https://www.linkedin.com/jobs/search/") == ""
