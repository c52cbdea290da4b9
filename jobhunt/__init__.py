"""jobhunt: multi-source job lead aggregator.

Polls IMAP job alerts and ATS vendor feeds, dedupes postings by a stable
source id, scores them against configured rules and persists them to SQLite.
"""

__version__ = "0.1.0"
