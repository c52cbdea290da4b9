"""Configuration loader for the jobhunt poller.

Reads config.yaml and returns typed configuration objects that the poller,
filter, scorer and individual fetchers consume. Company lists can live in a
separate sources file (``sources_file``) which overlays the main config.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from jobhunt.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"

VENDORS = ("greenhouse", "lever", "workday", "smartrecruiters")

DEFAULT_SOURCE_TIMEOUTS = {
    "greenhouse": 300.0,
    "lever": 300.0,
    "workday": 300.0,
    "smartrecruiters": 300.0,
    "email": 120.0,
}

DEFAULT_COMPANY_TIMEOUTS = {
    "greenhouse": 20.0,
    "lever": 10.0,
    "workday": 20.0,
    "smartrecruiters": 20.0,
}


@dataclass
class Rule:
    """A scoring rule: adds ``weight`` and ``tag`` when any term matches."""

    tag: str
    weight: int = 0
    any: list[str] = field(default_factory=list)


@dataclass
class Penalty:
    """Like a Rule but never contributes a tag."""

    reason: str
    weight: int = 0
    any: list[str] = field(default_factory=list)


@dataclass
class Company:
    slug: str
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.slug


@dataclass
class SourceConfig:
    """Per-vendor settings: on/off plus the companies to poll."""

    enabled: bool = False
    companies: list[Company] = field(default_factory=list)


@dataclass
class SourcesConfig:
    greenhouse: SourceConfig = field(default_factory=SourceConfig)
    lever: SourceConfig = field(default_factory=SourceConfig)
    workday: SourceConfig = field(default_factory=SourceConfig)
    smartrecruiters: SourceConfig = field(default_factory=SourceConfig)

    def get(self, vendor: str) -> SourceConfig:
        return getattr(self, vendor)


@dataclass
class FilterConfig:
    remote_ok: bool = True
    locations_allow: list[str] = field(default_factory=list)
    locations_block: list[str] = field(default_factory=list)


@dataclass
class ScoringConfig:
    title_rules: list[Rule] = field(default_factory=list)
    keyword_rules: list[Rule] = field(default_factory=list)
    penalties: list[Penalty] = field(default_factory=list)


@dataclass
class EmailConfig:
    """IMAP connection parameters. The password lives in the secret store."""

    enabled: bool = False
    imap_host: str = ""
    imap_port: int = 993
    username: str = ""
    mailbox: str = "INBOX"
    search_subject_any: list[str] = field(default_factory=list)
    max_emails: int = 30
    max_links_per_email: int = 20
    lookback_days: int = 90


@dataclass
class PollingConfig:
    interval_seconds: float = 900.0
    poll_timeout_seconds: float = 600.0
    source_timeouts: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_SOURCE_TIMEOUTS)
    )
    default_source_timeout: float = 120.0
    company_timeouts: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_COMPANY_TIMEOUTS)
    )
    default_company_timeout: float = 20.0
    workers: int = 8
    rate_per_second: float = 1.0
    burst: int = 2
    request_timeout_seconds: float = 20.0

    def source_timeout(self, name: str) -> float:
        return float(self.source_timeouts.get(name, self.default_source_timeout))

    def company_timeout(self, name: str) -> float:
        return float(self.company_timeouts.get(name, self.default_company_timeout))


@dataclass
class EnrichmentConfig:
    enabled: bool = True
    logo_max_bytes: int = 512 * 1024
    search_timeout_seconds: float = 12.0


@dataclass
class PipelineConfig:
    """Top-level configuration."""

    data_dir: str = "data"
    db_path: str = ""
    log_level: str = "INFO"
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    sources_file: str = ""

    filters: FilterConfig = field(default_factory=FilterConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)

    @property
    def database_path(self) -> Path:
        if self.db_path:
            return Path(self.db_path)
        return Path(self.data_dir) / "jobs.db"

    @property
    def enabled_vendors(self) -> list[str]:
        return [v for v in VENDORS if self.sources.get(v).enabled]


# ── Normalisation helpers ───────────────────────────────────────────────────


def _trim_dedupe(values: Any) -> list[str]:
    """Trim, drop blanks and de-duplicate case-insensitively, keeping order."""
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        text = str(value).strip()
        if not text or text.lower() in seen:
            continue
        seen.add(text.lower())
        out.append(text)
    return out


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _number(section: dict, key: str, default: Any, cast: type = float) -> Any:
    value = section.get(key)
    if value is None:
        value = default
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{key}' must be a number, got {value!r}") from exc


def _mapping_list(items: Any, kind: str) -> list[dict]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ConfigError(f"{kind} must be a list, got {type(items).__name__}")
    for item in items:
        if not isinstance(item, dict):
            raise ConfigError(f"each {kind} entry must be a mapping, got {item!r}")
    return items


def _timeouts(section: dict, key: str, defaults: dict[str, float]) -> dict[str, float]:
    timeouts = dict(defaults)
    overrides = _section(section, key)
    for name in overrides:
        timeouts[str(name).lower()] = _number(overrides, name, None)
    return timeouts


def _parse_rules(items: Any, kind: str) -> list[Rule]:
    rules: list[Rule] = []
    for item in _mapping_list(items, f"{kind} rule"):
        tag = str(item.get("tag", "")).strip()
        terms = _trim_dedupe(item.get("any"))
        if not tag or not terms:
            logger.warning("Dropping %s rule with tag=%r: needs a tag and at least one term",
                           kind, tag)
            continue
        rules.append(Rule(tag=tag, weight=_number(item, "weight", 0, int), any=terms))
    return rules


def _parse_penalties(items: Any) -> list[Penalty]:
    penalties: list[Penalty] = []
    for item in _mapping_list(items, "penalty"):
        reason = str(item.get("reason", "")).strip()
        terms = _trim_dedupe(item.get("any"))
        if not reason or not terms:
            logger.warning("Dropping penalty with reason=%r: needs a reason and at least one term",
                           reason)
            continue
        penalties.append(Penalty(reason=reason, weight=_number(item, "weight", 0, int),
                                 any=terms))
    return penalties


def _parse_companies(items: Any, keep_slug_case: bool = False) -> list[Company]:
    seen: set[tuple[str, str]] = set()
    companies: list[Company] = []
    if items is not None and not isinstance(items, list):
        raise ConfigError(f"companies must be a list, got {type(items).__name__}")
    for item in items or []:
        if isinstance(item, str):
            item = {"slug": item}
        elif not isinstance(item, dict):
            raise ConfigError(f"company entries must be a slug or a mapping, got {item!r}")
        slug = str(item.get("slug", "")).strip()
        name = str(item.get("name", "")).strip()
        if not keep_slug_case:
            slug = slug.lower()
        if not slug and not name:
            continue
        key = (slug, name.lower())
        if key in seen:
            continue
        seen.add(key)
        companies.append(Company(slug=slug, name=name))
    return companies


def _parse_sources(raw: dict) -> SourcesConfig:
    sources = SourcesConfig()
    for vendor in VENDORS:
        section = _section(raw, vendor)
        setattr(sources, vendor, SourceConfig(
            enabled=bool(section.get("enabled", False)),
            # Workday slugs are full board URLs; tenant/site casing matters there.
            companies=_parse_companies(section.get("companies"),
                                       keep_slug_case=(vendor == "workday")),
        ))
    return sources


def _overlay_sources_file(config_path: Path, config: PipelineConfig) -> None:
    """Replace company lists with those from ``sources_file`` when present."""
    overlay_path = Path(config.sources_file)
    if not overlay_path.is_absolute():
        overlay_path = config_path.parent / overlay_path

    if not overlay_path.exists():
        logger.warning("Sources file %s not found, keeping inline company lists", overlay_path)
        return

    with open(overlay_path, "r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{overlay_path}: top level must be a mapping")

    overlay = _parse_sources(_section(raw, "sources"))
    for vendor in VENDORS:
        companies = overlay.get(vendor).companies
        if companies:
            config.sources.get(vendor).companies = companies


# ── Loader ──────────────────────────────────────────────────────────────────


def load_config(path: Path | str | None = None) -> PipelineConfig:
    """Load and validate the configuration from a YAML file."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.warning("Config file not found at %s, using defaults", config_path)
        return PipelineConfig()

    with open(config_path, "r") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"{config_path}: invalid YAML: {exc}") from exc

    if not raw:
        return PipelineConfig()
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")

    filters_raw = _section(raw, "filters")
    filters = FilterConfig(
        remote_ok=bool(filters_raw.get("remote_ok", True)),
        locations_allow=_trim_dedupe(filters_raw.get("locations_allow")),
        locations_block=_trim_dedupe(filters_raw.get("locations_block")),
    )

    scoring_raw = _section(raw, "scoring")
    scoring = ScoringConfig(
        title_rules=_parse_rules(scoring_raw.get("title_rules"), "title"),
        keyword_rules=_parse_rules(scoring_raw.get("keyword_rules"), "keyword"),
        penalties=_parse_penalties(scoring_raw.get("penalties")),
    )

    email_raw = _section(raw, "email")
    email = EmailConfig(
        enabled=bool(email_raw.get("enabled", False)),
        imap_host=str(email_raw.get("imap_host", "")).strip(),
        imap_port=_number(email_raw, "imap_port", 993, int),
        username=str(email_raw.get("username", "")).strip(),
        mailbox=str(email_raw.get("mailbox") or "INBOX").strip(),
        search_subject_any=_trim_dedupe(email_raw.get("search_subject_any")),
        max_emails=_number(email_raw, "max_emails", 30, int),
        max_links_per_email=_number(email_raw, "max_links_per_email", 20, int),
        lookback_days=_number(email_raw, "lookback_days", 90, int),
    )

    polling_raw = _section(raw, "polling")
    source_timeouts = _timeouts(polling_raw, "source_timeouts", DEFAULT_SOURCE_TIMEOUTS)
    company_timeouts = _timeouts(polling_raw, "company_timeouts", DEFAULT_COMPANY_TIMEOUTS)
    polling = PollingConfig(
        interval_seconds=_number(polling_raw, "interval_seconds", 900),
        poll_timeout_seconds=_number(polling_raw, "poll_timeout_seconds", 600),
        source_timeouts=source_timeouts,
        default_source_timeout=_number(polling_raw, "default_source_timeout", 120),
        company_timeouts=company_timeouts,
        default_company_timeout=_number(polling_raw, "default_company_timeout", 20),
        workers=max(1, _number(polling_raw, "workers", 8, int)),
        rate_per_second=_number(polling_raw, "rate_per_second", 1.0),
        burst=_number(polling_raw, "burst", 2, int),
        request_timeout_seconds=_number(polling_raw, "request_timeout_seconds", 20),
    )

    enrichment_raw = _section(raw, "enrichment")
    enrichment = EnrichmentConfig(
        enabled=bool(enrichment_raw.get("enabled", True)),
        logo_max_bytes=_number(enrichment_raw, "logo_max_bytes", 512 * 1024, int),
        search_timeout_seconds=_number(enrichment_raw, "search_timeout_seconds", 12),
    )

    config = PipelineConfig(
        data_dir=raw.get("data_dir", "data"),
        db_path=raw.get("db_path", "") or "",
        log_level=raw.get("log_level", "INFO"),
        user_agent=raw.get("user_agent", PipelineConfig.user_agent),
        sources_file=raw.get("sources_file", "") or "",
        filters=filters,
        scoring=scoring,
        email=email,
        sources=_parse_sources(_section(raw, "sources")),
        polling=polling,
        enrichment=enrichment,
    )

    if config.sources_file:
        _overlay_sources_file(config_path, config)

    return config
