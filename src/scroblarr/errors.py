"""Typed failures raised by credential resolvers and destination adapters."""

import json
import re

_TITLE_RE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_H1_RE = re.compile(r"<h1[^>]*>(.*?)</h1>", re.IGNORECASE | re.DOTALL)


class ScroblarrError(Exception):
    """Base class for all scroblarr failures."""


# ========== Credentials ==========


class CredentialError(ScroblarrError):
    """A destination access token could not be obtained."""

    def __init__(self, destination: str, message: str):
        super().__init__(message)
        self.destination = destination


class NotLinkedError(CredentialError):
    """The user has no stored credentials (or app credentials) for the destination."""


class RefreshFailedError(CredentialError):
    """The refresh-token exchange failed and no fallback was possible."""


class ReauthFailedError(CredentialError):
    """The fallback full re-login failed."""


# ========== Scrobbling ==========


class ScrobbleError(ScroblarrError):
    """A destination rejected, or could not be asked to accept, a scrobble."""


class UnsupportedMediaError(ScrobbleError):
    """The destination cannot scrobble this kind of media."""


class MissingIdentifiersError(ScrobbleError):
    """The event lacks the identifiers the destination needs to match the item."""


class RemoteError(ScrobbleError):
    """The remote API answered with a non-success response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def extract_error_message(body: str, limit: int = 200) -> str:
    """Best-effort human readable message from a remote error body.

    Tries a JSON ``error``/``message`` field, then an HTML ``<title>`` or
    ``<h1>``, then falls back to the raw body truncated to ``limit``.
    """
    text = (body or "").strip()
    if not text:
        return ""

    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("error", "message"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value

    if text.startswith("<"):
        for pattern in (_TITLE_RE, _H1_RE):
            match = pattern.search(text)
            if match and match.group(1).strip():
                return match.group(1).strip()

    return text[:limit]
