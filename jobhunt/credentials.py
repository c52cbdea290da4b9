"""Secret lookup for credentials that must never live in config.yaml.

The IMAP app password is read from the environment (optionally populated
from a ``.env`` file via python-dotenv).
"""

from __future__ import annotations

import os
import re
from abc import ABC, abstractmethod

from dotenv import load_dotenv

IMAP_ACCOUNT = "imap_password"
ENV_PREFIX = "JOBHUNT_"


def env_var_for(account: str) -> str:
    return ENV_PREFIX + re.sub(r"[^A-Za-z0-9]+", "_", account).upper()


def imap_account(username: str = "") -> str:
    """Account key for an IMAP login.

    With no username this is the shared ``imap_password`` entry
    (``JOBHUNT_IMAP_PASSWORD``); otherwise it is scoped to the mailbox
    user, e.g. ``imap_password:me@example.com``.
    """
    username = (username or "").strip().lower()
    if not username:
        return IMAP_ACCOUNT
    return f"{IMAP_ACCOUNT}:{username}"


class SecretStore(ABC):
    @abstractmethod
    def get(self, account: str) -> str:
        """Return the secret for ``account``, or "" when not set."""
        ...


class EnvSecretStore(SecretStore):
    """Reads ``JOBHUNT_<ACCOUNT>`` from the environment, loading .env first."""

    def __init__(self, dotenv_path: str | None = None):
        load_dotenv(dotenv_path)

    def get(self, account: str) -> str:
        return os.getenv(env_var_for(account), "").strip()


class StaticSecretStore(SecretStore):
    """In-memory secrets, for tests and embedding."""

    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets = dict(secrets or {})

    def get(self, account: str) -> str:
        return self._secrets.get(account, "")
