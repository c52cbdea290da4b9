"""SQLite persistence for jobs, company domains and cached logos.

Three tables:

1. **jobs**: one row per posting, deduped by a unique ``source_id``
   (partial index, empty ids excluded). Rows are written once;
   only ``logo_key`` may later go from empty to non-empty.
2. **company_domains**: company name (normalised) -> website domain.
3. **logos**: image bytes keyed by sha256 of the source URL.

All access goes through one connection guarded by a re-entrant lock so
the store can be shared by fetcher threads and the poller.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import requests

from jobhunt.errors import MissingURLError, StorageUnavailable
from jobhunt.identity import url_source_id
from jobhunt.models import JobRow
from jobhunt.urls import canonicalize_url

logger = logging.getLogger(__name__)

DEFAULT_LOGO_MAX_BYTES = 512 * 1024
LOGO_FETCH_TIMEOUT = 15.0

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  company TEXT NOT NULL,
  title TEXT NOT NULL,
  location TEXT NOT NULL,
  work_mode TEXT NOT NULL,
  url TEXT NOT NULL,
  score INTEGER NOT NULL DEFAULT 0,
  tags TEXT NOT NULL DEFAULT '[]',
  received_at TEXT NOT NULL,
  first_seen TEXT NOT NULL,
  source TEXT NOT NULL DEFAULT '',
  source_id TEXT NOT NULL DEFAULT '',
  logo_key TEXT NOT NULL DEFAULT ''
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_source_id
ON jobs(source_id)
WHERE source_id != '';

CREATE TABLE IF NOT EXISTS company_domains (
  company_key TEXT PRIMARY KEY,
  domain TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS logos (
  key TEXT PRIMARY KEY,
  content_type TEXT NOT NULL,
  bytes BLOB NOT NULL,
  fetched_at TEXT NOT NULL
);
"""

# Leading bytes of the image formats favicon services return.
_IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"BM", "image/bmp"),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _iso(value: datetime | None) -> str:
    if value is None:
        return _now_iso()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def normalize_company_key(company: str) -> str:
    return " ".join((company or "").split()).lower()


def logo_key_for_url(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def sniff_image_type(data: bytes) -> str:
    """Return an image MIME type from magic bytes, or "" if not an image."""
    for signature, mime in _IMAGE_SIGNATURES:
        if data.startswith(signature):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    head = data[:256].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
        return "image/svg+xml"
    return ""


def is_allowed_logo_host(host: str) -> bool:
    """Only fetch from favicon/CDN hosts known to serve images to us."""
    host = (host or "").lower()
    if host == "media.licdn.com":
        return False
    if host in ("google.com", "www.google.com"):
        return True
    if host.endswith("googleusercontent.com"):
        return True
    return host.startswith("media-exp") and host.endswith(".licdn.com")


def apply_row_defaults(row: JobRow) -> JobRow:
    """Fill empty required columns; a missing URL is an error, never defaulted."""
    if not (row.url or "").strip():
        raise MissingURLError(f"job {row.title!r} has no URL")
    row.company = (row.company or "").strip() or "Unknown"
    row.title = (row.title or "").strip() or "Job Posting"
    row.location = (row.location or "").strip() or "Unknown"
    row.work_mode = (row.work_mode or "").strip() or "Unknown"
    row.source_id = (row.source_id or "").strip()
    if not row.source_id:
        row.source_id = url_source_id(canonicalize_url(row.url))
    return row


class JobStore:
    """Persistence adapter backed by a single SQLite file."""

    def __init__(
        self,
        path: str | Path,
        session: requests.Session | None = None,
        logo_max_bytes: int = DEFAULT_LOGO_MAX_BYTES,
    ):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._con = sqlite3.connect(self.path, check_same_thread=False)
        self._con.row_factory = sqlite3.Row
        self.session = session or requests.Session()
        self.logo_max_bytes = logo_max_bytes
        self.init_schema()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init_schema(self) -> None:
        with self._lock:
            self._con.executescript(SCHEMA)
            self._con.commit()

    def ping(self) -> None:
        """Raise StorageUnavailable if the database cannot be queried."""
        try:
            with self._lock:
                self._con.execute("SELECT 1").fetchone()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"job store {self.path} unavailable: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._con.close()

    def __enter__(self) -> JobStore:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def insert_if_new(self, row: JobRow) -> bool:
        """Insert the row unless its source_id already exists.

        Returns True when a row was written. A duplicate is not an error.
        """
        row = apply_row_defaults(row)
        with self._lock:
            cur = self._con.execute(
                """
                INSERT OR IGNORE INTO jobs(company, title, location, work_mode, url, score,
                                           tags, received_at, first_seen, source, source_id,
                                           logo_key)
                VALUES(?,?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    row.company,
                    row.title,
                    row.location,
                    row.work_mode,
                    row.url,
                    int(row.score),
                    json.dumps(list(row.tags)),
                    _iso(row.received_at),
                    _iso(row.first_seen),
                    row.source,
                    row.source_id,
                    row.logo_key or "",
                ),
            )
            self._con.commit()
            return cur.rowcount > 0

    def backfill_logo_key(self, source_id: str, key: str) -> bool:
        """Set logo_key only where it is still empty. Returns True if updated."""
        if not source_id or not key:
            return False
        with self._lock:
            cur = self._con.execute(
                """
                UPDATE jobs
                SET logo_key = ?
                WHERE source_id = ?
                  AND (logo_key = '' OR logo_key IS NULL)
                """,
                (key, source_id),
            )
            self._con.commit()
            return cur.rowcount > 0

    def get_job(self, source_id: str) -> dict | None:
        with self._lock:
            row = self._con.execute(
                "SELECT * FROM jobs WHERE source_id = ?", (source_id,)
            ).fetchone()
        return self._job_dict(row) if row else None

    def list_jobs(self, limit: int = 100) -> list[dict]:
        with self._lock:
            rows = self._con.execute(
                "SELECT * FROM jobs ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._job_dict(r) for r in rows]

    def count_jobs(self) -> int:
        with self._lock:
            return self._con.execute("SELECT COUNT(*) FROM jobs").fetchone()[0]

    @staticmethod
    def _job_dict(row: sqlite3.Row) -> dict:
        d = dict(row)
        d["tags"] = json.loads(d.get("tags") or "[]")
        return d

    # ------------------------------------------------------------------
    # Company domains
    # ------------------------------------------------------------------

    def get_company_domain(self, company: str) -> str:
        """Return the cached domain for a company, or "" when unknown."""
        key = normalize_company_key(company)
        if not key:
            return ""
        with self._lock:
            row = self._con.execute(
                "SELECT domain FROM company_domains WHERE company_key = ? LIMIT 1", (key,)
            ).fetchone()
        return row["domain"].strip() if row else ""

    def upsert_company_domain(self, company: str, domain: str) -> None:
        key = normalize_company_key(company)
        domain = (domain or "").strip().lower()
        if not key or not domain:
            return
        with self._lock:
            self._con.execute(
                """
                INSERT INTO company_domains(company_key, domain, updated_at)
                VALUES(?,?,?)
                ON CONFLICT(company_key) DO UPDATE SET
                  domain = excluded.domain,
                  updated_at = excluded.updated_at
                """,
                (key, domain, _now_iso()),
            )
            self._con.commit()

    # ------------------------------------------------------------------
    # Logos
    # ------------------------------------------------------------------

    def has_logo(self, key: str) -> bool:
        with self._lock:
            row = self._con.execute("SELECT 1 FROM logos WHERE key = ? LIMIT 1", (key,)).fetchone()
        return row is not None

    def get_logo(self, key: str) -> tuple[str, bytes] | None:
        """Return (content_type, bytes) for a cached logo."""
        with self._lock:
            row = self._con.execute(
                "SELECT content_type, bytes FROM logos WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return row["content_type"], bytes(row["bytes"])

    def cache_image_from_url(self, url: str) -> str:
        """Fetch an image and store it, returning its cache key.

        Returns "" when the URL is not on the allowlist, the fetch fails,
        the body is too large, or it is not an image. Already-cached URLs
        are not fetched again.
        """
        raw = (url or "").strip().split("#", 1)[0].strip()
        if not raw:
            return ""
        try:
            parts = urlsplit(raw)
        except ValueError:
            return ""
        if not parts.scheme or not parts.hostname:
            return ""
        if not is_allowed_logo_host(parts.hostname):
            logger.debug("[logo-cache] host not allowed: %s", parts.hostname)
            return ""

        key = logo_key_for_url(raw)
        if self.has_logo(key):
            return key

        try:
            resp = self.session.get(
                raw,
                timeout=LOGO_FETCH_TIMEOUT,
                stream=True,
                headers={
                    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
                    "Referer": "https://www.linkedin.com/",
                },
            )
        except requests.RequestException as exc:
            logger.warning("[logo-cache] fetch error url=%s err=%s", raw, exc)
            return ""

        with resp:
            if not 200 <= resp.status_code < 300:
                logger.warning("[logo-cache] non-2xx url=%s status=%d", raw, resp.status_code)
                return ""
            data = b""
            for chunk in resp.iter_content(chunk_size=16 * 1024):
                data += chunk
                if len(data) > self.logo_max_bytes:
                    break
            content_type = resp.headers.get("Content-Type", "").split(";", 1)[0].strip()

        if not data or len(data) > self.logo_max_bytes:
            logger.warning("[logo-cache] rejected url=%s size=%d", raw, len(data or b""))
            return ""

        if not content_type.startswith("image/"):
            content_type = sniff_image_type(data)
            if not content_type:
                logger.warning("[logo-cache] not an image url=%s", raw)
                return ""

        with self._lock:
            self._con.execute(
                """
                INSERT OR REPLACE INTO logos(key, content_type, bytes, fetched_at)
                VALUES(?,?,?,?)
                """,
                (key, content_type, sqlite3.Binary(data), _now_iso()),
            )
            self._con.commit()
        return key
