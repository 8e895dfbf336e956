"""
Environment configuration for the Fastmail MCP server.

Values are read from the process environment, falling back to a ``.env``
file located next to this module.  Every setting can be supplied under a
few alternative names (MCP hosts such as Claude Desktop prefix user
configuration with ``USER_CONFIG_``); the first non-empty value wins.
Unexpanded template placeholders like ``${FASTMAIL_API_TOKEN}`` are
treated as missing rather than sent to Fastmail as credentials.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

# The process environment takes precedence over the .env file so that
# values injected by the MCP host are never clobbered.
load_dotenv(dotenv_path=Path(__file__).with_name(".env"), override=False)


DEFAULT_BASE_URL = "https://api.fastmail.com"
DEFAULT_CALDAV_URL = "https://caldav.fastmail.com"
DEFAULT_HTTP_TIMEOUT = 30.0

TOKEN_KEYS = (
    "FASTMAIL_API_TOKEN",
    "USER_CONFIG_FASTMAIL_API_TOKEN",
    "USER_CONFIG_fastmail_api_token",
    "fastmail_api_token",
)
BASE_URL_KEYS = (
    "FASTMAIL_BASE_URL",
    "USER_CONFIG_FASTMAIL_BASE_URL",
    "USER_CONFIG_fastmail_base_url",
    "fastmail_base_url",
)
ACCOUNT_ID_KEYS = ("FASTMAIL_ACCOUNT_ID",)
CALDAV_TOKEN_KEYS = (
    "FASTMAIL_CALDAV_API_TOKEN",
    "USER_CONFIG_FASTMAIL_CALDAV_API_TOKEN",
)
CALDAV_USERNAME_KEYS = (
    "FASTMAIL_CALDAV_USERNAME",
    "USER_CONFIG_FASTMAIL_CALDAV_USERNAME",
)
CALDAV_URL_KEYS = ("FASTMAIL_CALDAV_URL",)

_PLACEHOLDER_RE = re.compile(r"\$\{[^}]+\}")


class ConfigError(RuntimeError):
    """Raised when a required setting is missing or unusable."""


@dataclass(frozen=True)
class EnvLookup:
    """Outcome of scanning a list of environment keys."""

    value: Optional[str] = None
    key: Optional[str] = None
    was_placeholder: bool = False


def is_placeholder(value: str) -> bool:
    return bool(_PLACEHOLDER_RE.search(value.strip()))


def find_env_value(keys: Sequence[str]) -> EnvLookup:
    """
    Return the first non-empty value among ``keys``.

    The scan stops at the first key that holds anything at all.  If that
    value is a placeholder the lookup reports it (``was_placeholder``)
    instead of moving on to lower-priority keys.
    """
    for key in keys:
        raw = os.environ.get(key)
        if raw is None or not raw.strip():
            continue
        if is_placeholder(raw):
            return EnvLookup(value=None, key=key, was_placeholder=True)
        return EnvLookup(value=raw.strip(), key=key)
    return EnvLookup()


def resolve_env_value(*keys: str) -> Optional[str]:
    """Return the first usable value among ``keys``, skipping placeholders."""
    for key in keys:
        raw = os.environ.get(key)
        if raw is not None and raw.strip() and not is_placeholder(raw):
            return raw.strip()
    return None


def mask_secret(value: str) -> str:
    """Render a secret for log output without revealing it."""
    if len(value) <= 6:
        return "***"
    return f"{value[:4]}...{value[-2:]} (len {len(value)})"


def _http_timeout() -> float:
    raw = resolve_env_value("FASTMAIL_HTTP_TIMEOUT")
    if raw is None:
        return DEFAULT_HTTP_TIMEOUT
    try:
        return max(1.0, float(raw))
    except ValueError as exc:
        raise ConfigError(f"FASTMAIL_HTTP_TIMEOUT must be a number, got {raw!r}") from exc


# ---------------------------------------------------------------------------
#  Settings objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JmapSettings:
    api_token: str
    base_url: str = DEFAULT_BASE_URL
    account_id: Optional[str] = None
    timeout: float = DEFAULT_HTTP_TIMEOUT

    @property
    def session_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/jmap/session"


@dataclass(frozen=True)
class CalDavSettings:
    username: str
    password: str
    url: str = DEFAULT_CALDAV_URL


def load_jmap_settings() -> JmapSettings:
    """Build JMAP settings from the environment.

    Raises:
        ConfigError: if no API token is configured.
    """
    token = find_env_value(TOKEN_KEYS)
    if not token.value:
        if token.was_placeholder:
            raise ConfigError(
                f"{token.key} contains an unexpanded placeholder; "
                "set FASTMAIL_API_TOKEN to a real API token"
            )
        raise ConfigError("FASTMAIL_API_TOKEN environment variable is required")
    base = find_env_value(BASE_URL_KEYS)
    return JmapSettings(
        api_token=token.value,
        base_url=base.value or DEFAULT_BASE_URL,
        account_id=resolve_env_value(*ACCOUNT_ID_KEYS),
        timeout=_http_timeout(),
    )


def load_caldav_settings() -> Optional[CalDavSettings]:
    """Build CalDAV settings, or return None when CalDAV is not configured.

    CalDAV is optional: both an app password and a username are needed,
    otherwise calendar tools fall back to JMAP.
    """
    password = resolve_env_value(*CALDAV_TOKEN_KEYS)
    if not password:
        return None
    username = resolve_env_value(*CALDAV_USERNAME_KEYS)
    if not username:
        return None
    return CalDavSettings(
        username=username,
        password=password,
        url=resolve_env_value(*CALDAV_URL_KEYS) or DEFAULT_CALDAV_URL,
    )


# Server address configuration, used only by the HTTP transport.
MCP_TRANSPORT: str = os.environ.get("MCP_TRANSPORT", "stdio").strip().lower()
SERVER_HOST: str = os.environ.get("HOST", "127.0.0.1").strip()
SERVER_PORT: int = int(os.environ.get("PORT", "8000"))
