# qrsec/url_utils.py

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import idna

from qrsec.errors import InvalidInputError

ALLOWED_SCHEMES = {"http", "https"}
MAX_URL_LENGTH = 2048

_WHITESPACE = re.compile(r"\s")


def _ascii_host(host: str) -> str:
    if host.isascii():
        return host
    try:
        return idna.encode(host, uts46=True).decode("ascii")
    except UnicodeError as exc:
        raise InvalidInputError("URL host is not a valid domain name.", {"host": host}) from exc


def normalize_url(raw: Any) -> str:
    """
    Validate caller input and return the canonical URL sent to providers.

    Only absolute http(s) URLs with a host pass. Scheme and host are
    lower-cased and an internationalized host becomes punycode; path, query
    and fragment are kept as given.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidInputError("A URL is required.")

    text = raw.strip()
    if len(text) > MAX_URL_LENGTH:
        raise InvalidInputError("URL is too long.", {"max_length": MAX_URL_LENGTH})
    if _WHITESPACE.search(text):
        raise InvalidInputError("URL must not contain whitespace.")

    try:
        parts = urlsplit(text)
        port = parts.port
    except ValueError as exc:
        raise InvalidInputError("URL could not be parsed.") from exc

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidInputError("Only http:// and https:// URLs can be checked.")

    host = parts.hostname or ""
    if not host:
        raise InvalidInputError("URL has no host.")

    netloc = _ascii_host(host.lower())
    if ":" in netloc:
        netloc = f"[{netloc}]"
    if port is not None:
        netloc = f"{netloc}:{port}"
    if parts.username or parts.password:
        userinfo = parts.username or ""
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))
