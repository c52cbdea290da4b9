"""Shared fixtures for the jobhunt tests."""

import pytest

from jobhunt.config import (
    EnrichmentConfig,
    FilterConfig,
    PipelineConfig,
    PollingConfig,
    Rule,
    ScoringConfig,
)
from jobhunt.models import Lead
from jobhunt.storage import JobStore

# Smallest valid PNG header; enough for content sniffing.
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def make_config(**overrides) -> PipelineConfig:
    """A config with one backend title rule, no enrichment and fast polling."""
    config = PipelineConfig(
        filters=FilterConfig(remote_ok=True),
        scoring=ScoringConfig(
            title_rules=[Rule(tag="backend", weight=10, any=["backend"])],
        ),
        polling=PollingConfig(workers=4, rate_per_second=1000.0, burst=100),
        enrichment=EnrichmentConfig(enabled=False),
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def make_lead(**overrides) -> Lead:
    fields = dict(
        company="Acme",
        title="Backend Engineer",
        url="https://jobs.lever.co/acme/123",
        source="Lever",
        location="Remote",
        vendor_job_id="lever:acme:123",
    )
    fields.update(overrides)
    return Lead(**fields)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def store(tmp_path):
    s = JobStore(tmp_path / "jobs.db")
    yield s
    s.close()
