"""Data models for the jobhunt pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

WORK_MODE_REMOTE = "Remote"
WORK_MODE_HYBRID = "Hybrid"
WORK_MODE_ONSITE = "Onsite"
WORK_MODE_UNKNOWN = "Unknown"


@dataclass(frozen=True)
class MessageContext:
    """Where an email-derived lead came from; feeds the source id hash."""

    message_id: str = ""
    sender: str = ""
    subject: str = ""


@dataclass
class Lead:
    """A candidate job posting produced by a fetcher.

    Leads are ephemeral: they live for one poll cycle and are turned into
    JobRows by the lead processor.
    """

    company: str
    title: str
    url: str
    source: str  # e.g. "Lever", "Workday", "Email"
    location: str = ""
    work_mode: str = ""
    vendor_job_id: str = ""  # already "{vendor}:{tenant}:{id}"
    description: str = ""
    posted_at: Optional[datetime] = None
    logo_url: str = ""
    message: Optional[MessageContext] = None

    @property
    def text(self) -> str:
        """Title and description as one lowercase blob for matching."""
        return f"{self.title} {self.description}".lower()

    def __repr__(self) -> str:
        return (
            f"Lead(title={self.title!r}, company={self.company!r}, "
            f"source={self.source!r}, location={self.location!r})"
        )


@dataclass
class JobRow:
    """A normalised row ready for the jobs table."""

    company: str
    title: str
    location: str
    work_mode: str
    url: str
    source_id: str
    source: str = ""
    score: int = 0
    tags: list[str] = field(default_factory=list)
    received_at: Optional[datetime] = None
    first_seen: Optional[datetime] = None
    logo_key: str = ""


@dataclass(frozen=True)
class ScoreResult:
    score: int
    tags: tuple[str, ...] = ()


@dataclass
class ScrapeResult:
    """What one fetcher returns: its leads plus per-company failures."""

    source: str
    leads: list[Lead] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
