"""IMAP email fetcher.

Reads unseen messages from one mailbox and turns job links into leads:

  - LinkedIn job alerts are parsed card by card (see ``linkedin.py``)
  - any other matching email is scanned for links; links that look like
    postings are kept, and company/title/location are guessed from the
    subject line, the anchor text and the sender

Every message that was looked at is flagged ``\\Seen`` afterwards, so a
message is read once even when it yields nothing.
"""

from __future__ import annotations

import email
import imaplib
import logging
import re
from datetime import datetime, timedelta, timezone
from email import policy
from email.message import EmailMessage
from email.utils import parsedate_to_datetime
from typing import Any, Callable, NamedTuple

from bs4 import BeautifulSoup

from jobhunt.config import PipelineConfig
from jobhunt.credentials import IMAP_ACCOUNT, SecretStore, imap_account
from jobhunt.deadline import Deadline
from jobhunt.errors import ConfigError, UpstreamError
from jobhunt.models import Lead, MessageContext, ScrapeResult
from jobhunt.normalize import clean_text, infer_work_mode
from jobhunt.ratelimit import HostLimiter
from jobhunt.scrapers.base import BaseFetcher
from jobhunt.scrapers.linkedin import looks_like_job_alert, parse_job_alert_html
from jobhunt.urls import canonicalize_url, score_url, url_host

logger = logging.getLogger(__name__)

# ── Link heuristics ─────────────────────────────────────────────────────────

DENY_SUBSTRINGS = (
    "unsubscribe",
    "email-preferences",
    "preferences",
    "manage-preferences",
    "privacy",
    "terms",
    "view-in-browser",
    "viewaswebpage",
    "browser",
    "tracking",
    "pixel",
    "beacon",
    "doubleclick",
    "mandrillapp",
    "sendgrid",
    "mailchimp",
    "list-manage",
    "linkedin.com/comm/jobs/alerts",
    "linkedin.com/jobs/alerts",
    "linkedin.com/comm/jobs/settings",
    "linkedin.com/jobs/settings",
    "linkedin.com/comm/notifications",
    "linkedin.com/help",
    "linkedin.com/legal",
)

# Link shorteners hide the destination; matched on the whole host.
SHORTENER_HOSTS = frozenset({"lnkd.in", "goo.gl", "t.co", "bit.ly"})

ALLOW_HINTS = (
    "/jobs/",
    "/job/",
    "/career",
    "/careers",
    "greenhouse.io",
    "lever.co",
    "myworkdayjobs.com",
    "workday",
    "icims.com",
    "smartrecruiters.com",
    "ashbyhq.com",
    "breezy.hr",
    "jobvite.com",
    "applytojob.com",
)

# Anchor text of footer links that are never postings.
SKIP_ANCHOR_TEXT = ("manage job alerts", "job alerts", "unsubscribe", "privacy", "terms")

REJECT_URL_PARTS = ("/jobs/search", "/comm/jobs/search", "/alerts", "/preferences")
JUNK_TITLES = frozenset({"mobile", "apply", "view", "click here"})
JUNK_COMPANIES = frozenset({"t", "linkedin", "linked in"})

CONTEXT_SEPARATORS = (" · ", " • ", " - ", " | ")
FORWARD_PREFIXES = ("fwd:", "fw:", "re:")
MAX_TITLE_CHARS = 120

_NAKED_URL_RE = re.compile(r"https?://[^\s<>\"']+")
_URL_TRAILING = ".,);:]\"'"

# "“python”: Acme - Backend Engineer - Remote and more"
_QUOTED_KEYWORD_RE = re.compile(r"^[“\"](.*?)[”\"]:\s*(.*?)\s*-\s*(.*?)\s*-\s*(.*)$")
# "Acme and others are hiring for Data Engineer in and around Austin, TX"
_HIRING_AROUND_RE = re.compile(
    r"^(.*?)\s+and\s+others\s+are\s+hiring\s+for\s+(.*?)\s+in\s+(?:and\s+around\s+)?(.*)$"
)
# "Acme is hiring for Data Engineer in Austin, TX"
_HIRING_IN_RE = re.compile(r"^(.*?)\s+is\s+hiring\s+for\s+(.*?)\s+in\s+(.*)$")
# "Acme - Data Engineer - Austin, TX"
_DASHED_RE = re.compile(r"^(.*?)\s*-\s*(.*?)\s*-\s*(.*)$")
_AND_MORE_RE = re.compile(r"\s*and\s+more\s*$", re.IGNORECASE)


class SubjectParts(NamedTuple):
    company: str = ""
    title: str = ""
    location: str = ""
    work_mode: str = ""


def clean_location(loc: str) -> str:
    """Strip punctuation and "and more"; bare work modes are not locations."""
    loc = (loc or "").strip().rstrip(".,").strip()
    loc = _AND_MORE_RE.sub("", loc).strip()
    if loc.lower() in ("remote", "hybrid", "on-site", "onsite"):
        return ""
    return loc


def parse_subject(subject: str) -> SubjectParts:
    """Pull company/title/location/work mode out of an alert subject line.

    Falls back to the whole subject as the title.
    """
    subj = (subject or "").strip()
    if not subj:
        return SubjectParts()

    m = _QUOTED_KEYWORD_RE.match(subj)
    if m:
        tail = _AND_MORE_RE.sub("", m.group(4).strip())
        return SubjectParts(
            company=m.group(2).strip(),
            title=m.group(3).strip(),
            location=clean_location(tail),
            work_mode=infer_work_mode(tail, subj),
        )

    for pattern in (_HIRING_AROUND_RE, _HIRING_IN_RE, _DASHED_RE):
        m = pattern.match(subj)
        if m:
            location = m.group(3).strip()
            return SubjectParts(
                company=m.group(1).strip(),
                title=m.group(2).strip(),
                location=clean_location(location),
                work_mode=infer_work_mode(location, subj),
            )

    return SubjectParts(title=subj, work_mode=infer_work_mode(subj))


def parse_context_text(text: str) -> SubjectParts:
    """Split anchor text like "Title · Company · Location"."""
    text = (text or "").strip()
    if not text:
        return SubjectParts()
    parts = [text]
    for sep in CONTEXT_SEPARATORS:
        if sep in text:
            parts = [p.strip() for p in text.split(sep) if p.strip()]
            break

    title = parts[0] if parts else ""
    company = parts[1] if len(parts) >= 2 else ""
    location = ""
    work_mode = ""
    if len(parts) >= 3:
        location = clean_location(parts[2])
        work_mode = infer_work_mode(location, text)
    return SubjectParts(company=company, title=title, location=location, work_mode=work_mode)


def guess_company_from_sender(sender: str) -> str:
    """Display name if present, else the capitalised first domain label."""
    sender = (sender or "").strip()
    if not sender:
        return "Unknown"
    if "<" in sender:
        name = sender[:sender.index("<")].strip().strip('"')
        if name:
            return name
    if "@" in sender:
        domain = sender[sender.rindex("@") + 1:].strip("> ")
        label = domain.split(".")[0]
        if label:
            return label[:1].upper() + label[1:]
    return "Unknown"


def guess_title_from_subject(subject: str) -> str:
    s = (subject or "").strip()
    if not s:
        return "Job Posting"
    for prefix in FORWARD_PREFIXES:
        if s.lower().startswith(prefix):
            s = s[len(prefix):].strip()
    return s[:MAX_TITLE_CHARS]


def matches_subject(subject: str, terms: list[str]) -> bool:
    """Case-insensitive substring match; no terms means everything matches."""
    if not terms:
        return True
    ls = (subject or "").lower()
    return any(t.strip() and t.strip().lower() in ls for t in terms)


def extract_links(body: str) -> tuple[list[str], dict[str, str]]:
    """Collect anchor and bare URLs from a body.

    Returns the URLs (deduped by canonical form, first-seen order) and the
    longest anchor text seen for each canonical URL.
    """
    contexts: dict[str, str] = {}
    urls: list[str] = []
    text_version = body or ""

    lowered = text_version.lower()
    if "<html" in lowered or "<a " in lowered:
        soup = BeautifulSoup(body, "html.parser")
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            label = clean_text(anchor.get_text(" "))
            ll = label.lower()
            if ll == "manage alerts" or any(s in ll for s in SKIP_ANCHOR_TEXT):
                continue
            if not href or href.startswith("#"):
                continue
            urls.append(href)
            key = canonicalize_url(href)
            if len(label) > len(contexts.get(key, "")):
                contexts[key] = label
        text_version = soup.get_text(" ")

    urls.extend(_NAKED_URL_RE.findall(text_version))

    seen: set[str] = set()
    out: list[str] = []
    for url in urls:
        url = url.strip().rstrip(_URL_TRAILING)
        if not url:
            continue
        key = canonicalize_url(url)
        if key in seen:
            continue
        seen.add(key)
        out.append(url)
    return out, contexts


def filter_job_links(urls: list[str]) -> list[str]:
    """Keep canonical URLs that look like postings, deduped."""
    seen: set[str] = set()
    out: list[str] = []
    for url in urls:
        canonical = canonicalize_url(url)
        lu = canonical.lower()
        if not lu.startswith(("http://", "https://")):
            continue
        host = url_host(canonical)
        if host in SHORTENER_HOSTS or host.startswith("click."):
            continue
        if any(d in lu for d in DENY_SUBSTRINGS):
            continue
        if not any(a in lu for a in ALLOW_HINTS):
            continue
        if lu in seen:
            continue
        seen.add(lu)
        out.append(canonical)
    return out


def is_plausible_job(company: str, title: str, url: str) -> bool:
    """Reject navbar/footer anchors and non-posting pages."""
    t = (title or "").strip()
    c = (company or "").strip().lower()
    u = (url or "").strip().lower()
    if not t or not u or len(t) < 8:
        return False
    if len(t.split()) < 2 and len(t) < 18:
        return False
    if sum(1 for ch in t if ch.isascii() and ch.isalpha()) < 5:
        return False
    if t.lower() in JUNK_TITLES or c in JUNK_COMPANIES:
        return False
    if any(part in u for part in REJECT_URL_PARTS):
        logger.debug("[email] rejected link title=%r company=%r url=%r", title, company, url)
        return False
    return True


def _part_text(part: Any) -> str:
    if part is None:
        return ""
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError) as exc:
        logger.debug("[email] undecodable part: %s", exc)
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def message_bodies(msg: EmailMessage) -> tuple[str, str]:
    """Return (html, plain) bodies of a message, either may be empty."""
    html = _part_text(msg.get_body(preferencelist=("html",)))
    plain = _part_text(msg.get_body(preferencelist=("plain",)))
    return html, plain


def message_received_at(msg: EmailMessage) -> datetime | None:
    raw = msg.get("Date")
    if not raw:
        return None
    try:
        received = parsedate_to_datetime(str(raw))
    except (TypeError, ValueError):
        return None
    if received.tzinfo is None:
        received = received.replace(tzinfo=timezone.utc)
    return received


class EmailFetcher(BaseFetcher):
    """Fetches job leads from unseen messages in an IMAP mailbox."""

    source_name = "email"
    label = "Email"

    def __init__(
        self,
        config: PipelineConfig,
        secrets: SecretStore,
        limiter: HostLimiter | None = None,
        session: Any = None,
        imap_factory: Callable[..., Any] = imaplib.IMAP4_SSL,
    ):
        super().__init__(config, limiter=limiter, session=session)
        self.secrets = secrets
        self.imap_factory = imap_factory

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def fetch(self, deadline: Deadline) -> ScrapeResult:
        cfg = self.config.email
        if not cfg.imap_host or not cfg.username:
            raise ConfigError("email enabled but imap_host/username missing")
        password = self.secrets.get(imap_account(cfg.username)) or self.secrets.get(IMAP_ACCOUNT)
        if not password:
            raise ConfigError(
                "email enabled but no IMAP password in the secret store "
                "(set JOBHUNT_IMAP_PASSWORD)"
            )

        result = ScrapeResult(source=self.name)
        timeout = deadline.timeout_for(self.config.polling.request_timeout_seconds)
        deadline.check()

        try:
            conn = self.imap_factory(cfg.imap_host, cfg.imap_port, timeout=timeout)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise UpstreamError(f"imap connect {cfg.imap_host}:{cfg.imap_port}: {exc}") from exc

        try:
            self._login_and_select(conn, password)
            uids = self._search_unseen(conn)
            logger.info("[%s] %d unseen messages (reading up to %d)",
                        self.name, len(uids), cfg.max_emails)

            processed: list[bytes] = []
            for uid in uids[:cfg.max_emails]:
                if deadline.done:
                    logger.warning("[%s] deadline reached after %d messages", self.name,
                                   len(processed))
                    break
                msg = self._fetch_message(conn, uid)
                processed.append(uid)
                if msg is None:
                    continue
                try:
                    result.leads.extend(self.parse_message(msg))
                except Exception as exc:
                    result.failures[f"uid {uid.decode()}"] = str(exc)
                    logger.error("[%s] failed to parse uid=%s err=%s", self.name, uid, exc)

            self._mark_seen(conn, processed)
        except imaplib.IMAP4.error as exc:
            raise UpstreamError(f"imap: {exc}") from exc
        except OSError as exc:
            raise UpstreamError(f"imap connection: {exc}") from exc
        finally:
            self._logout(conn)

        logger.info("[%s] Processed: %d leads from %s", self.name, len(result.leads), cfg.mailbox)
        return result

    def parse_message(self, msg: EmailMessage) -> list[Lead]:
        """Turn one message into leads. Non-matching subjects yield none."""
        cfg = self.config.email
        subject = clean_text(str(msg.get("Subject") or ""))
        sender = str(msg.get("From") or "").strip()
        context = MessageContext(
            message_id=str(msg.get("Message-ID") or "").strip(),
            sender=sender,
            subject=subject,
        )

        if not matches_subject(subject, cfg.search_subject_any):
            logger.debug("[%s] subject not matched: %r", self.name, subject)
            return []

        html, plain = message_bodies(msg)
        received_at = message_received_at(msg)

        if html and looks_like_job_alert(subject, html + "\n" + plain):
            leads = self._linkedin_leads(html, context, received_at)
            if leads:
                logger.debug("[%s] LinkedIn alert %r: %d jobs", self.name, subject, len(leads))
                return leads

        body = f"{html}\n{plain}" if html else plain
        return self._link_leads(body, context, received_at)

    # ------------------------------------------------------------------
    # Lead building
    # ------------------------------------------------------------------

    def _linkedin_leads(
        self, html: str, context: MessageContext, received_at: datetime | None
    ) -> list[Lead]:
        leads: list[Lead] = []
        for job in parse_job_alert_html(html):
            card = f"{job.company} · {job.location}" if job.company or job.location else ""
            description = "\n".join(
                part for part in (context.subject, context.sender, card, job.salary, job.url) if part
            )
            leads.append(Lead(
                company=job.company,
                title=job.title,
                url=job.url,
                source=self.label,
                location=job.location,
                work_mode=infer_work_mode(job.location, context.subject),
                vendor_job_id=job.source_id,
                description=description,
                posted_at=received_at,
                logo_url=job.logo_url,
                message=context,
            ))
        return leads

    def _link_leads(
        self, body: str, context: MessageContext, received_at: datetime | None
    ) -> list[Lead]:
        urls, contexts = extract_links(body)
        links = filter_job_links(urls)
        links.sort(key=score_url, reverse=True)
        links = links[:self.config.email.max_links_per_email]

        from_subject = parse_subject(context.subject)
        leads: list[Lead] = []
        for url in links:
            company, title, location, work_mode = from_subject

            anchor = parse_context_text(contexts.get(url, ""))
            if anchor.title:
                company = company or anchor.company
                title = title or anchor.title
                location = location or anchor.location
                work_mode = work_mode or anchor.work_mode

            company = company or guess_company_from_sender(context.sender)
            title = title or guess_title_from_subject(context.subject)

            if not is_plausible_job(company, title, url):
                continue

            leads.append(Lead(
                company=company,
                title=title,
                url=url,
                source=self.label,
                location=location,
                work_mode=work_mode,
                description=context.subject,
                posted_at=received_at,
                message=context,
            ))
        return leads

    # ------------------------------------------------------------------
    # IMAP helpers
    # ------------------------------------------------------------------

    def _login_and_select(self, conn: Any, password: str) -> None:
        cfg = self.config.email
        conn.login(cfg.username, password)
        typ, data = conn.select(cfg.mailbox or "INBOX")
        if typ != "OK":
            raise UpstreamError(f"imap select {cfg.mailbox!r}: {data!r}")

    def _search_unseen(self, conn: Any) -> list[bytes]:
        """UIDs of unseen messages within the lookback window, newest first."""
        since = datetime.now(timezone.utc) - timedelta(days=self.config.email.lookback_days)
        typ, data = conn.uid("SEARCH", None, "UNSEEN", "SINCE", since.strftime("%d-%b-%Y"))
        if typ != "OK" or not data or not data[0]:
            return []
        return list(reversed(data[0].split()))

    def _fetch_message(self, conn: Any, uid: bytes) -> EmailMessage | None:
        typ, data = conn.uid("FETCH", uid, "(BODY.PEEK[])")
        if typ != "OK" or not data:
            logger.warning("[%s] fetch uid=%s returned %s", self.name, uid, typ)
            return None
        for item in data:
            if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes):
                return email.message_from_bytes(item[1], policy=policy.default)
        return None

    def _mark_seen(self, conn: Any, uids: list[bytes]) -> None:
        if not uids:
            return
        typ, data = conn.uid("STORE", b",".join(uids), "+FLAGS", "(\\Seen)")
        if typ != "OK":
            raise UpstreamError(f"imap mark seen: {data!r}")

    def _logout(self, conn: Any) -> None:
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as exc:
            logger.debug("[%s] logout failed: %s", self.name, exc)
