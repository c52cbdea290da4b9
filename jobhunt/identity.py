"""Stable dedupe keys (source ids) for job rows.

Resolution order:
  1. the vendor-native id, already formatted ``{vendor}:{tenant}:{id}``
  2. for email leads, a hash of message-id + canonical URL, or of
     sender + subject + canonical URL when there is no message id
  3. a hash of ``"url:" + canonical URL``

Changing this order changes whether a re-polled posting is a duplicate
or a new row.
"""

from __future__ import annotations

import hashlib

from jobhunt.errors import MissingURLError
from jobhunt.models import Lead, MessageContext
from jobhunt.urls import canonicalize_url, is_linkedin_search_url


def hash_string(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def vendor_source_id(vendor: str, tenant: str, job_id: str) -> str:
    return f"{vendor}:{tenant}:{job_id}"


def url_source_id(canonical_url: str) -> str:
    return hash_string("url:" + canonical_url)


def email_source_id(message: MessageContext, url: str) -> str:
    """Hash for an email-derived link. Empty for LinkedIn search pages."""
    canonical = canonicalize_url(url)
    if is_linkedin_search_url(canonical):
        return ""
    if message.message_id:
        base = f"mid:{message.message_id}|url:{canonical}"
    else:
        base = f"from:{message.sender}|sub:{message.subject}|url:{canonical}"
    return hash_string(base)


def resolve_source_id(lead: Lead) -> str:
    """Return the dedupe key for a lead.

    Raises MissingURLError when the lead has no usable URL; such leads
    must be rejected rather than given a made-up identity.
    """
    canonical = canonicalize_url(lead.url)
    if not canonical:
        raise MissingURLError(f"lead {lead.title!r} from {lead.source} has no URL")

    if lead.vendor_job_id.strip():
        return lead.vendor_job_id.strip()

    if lead.message is not None:
        sid = email_source_id(lead.message, canonical)
        if sid:
            return sid

    return url_source_id(canonical)
