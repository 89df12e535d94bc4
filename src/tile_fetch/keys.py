from __future__ import annotations

import hashlib
from typing import Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

CREDENTIAL_PARAMS: frozenset[str] = frozenset({"key", "session"})


def _split_query(url: str) -> tuple[tuple[str, str, str, str, str], list[tuple[str, str]]]:
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    return (parts.scheme, parts.netloc, parts.path, parts.query, parts.fragment), params


def strip_credentials(url: str) -> str:
    """Drop ``key``/``session`` and sort the remaining query parameters."""

    (scheme, netloc, path, _, _), params = _split_query(url)
    kept = sorted((k, v) for k, v in params if k not in CREDENTIAL_PARAMS)
    return urlunsplit((scheme, netloc, path, urlencode(kept), ""))


def cache_key(url: str) -> str:
    return hashlib.sha1(strip_credentials(url).encode("utf-8")).hexdigest()


def query_param(url: str, name: str) -> Optional[str]:
    _, params = _split_query(url)
    for key, value in params:
        if key == name and value != "":
            return value
    return None


def with_params(url: str, params: Mapping[str, Optional[str]]) -> str:
    """Set (or replace) query parameters; ``None`` values are left out."""

    (scheme, netloc, path, _, fragment), existing = _split_query(url)
    merged = [(k, v) for k, v in existing if k not in params]
    merged.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit((scheme, netloc, path, urlencode(merged), fragment))


def redact_url(url: str) -> str:
    (scheme, netloc, path, _, _), params = _split_query(url)
    redacted = [(k, "***" if k in CREDENTIAL_PARAMS else v) for k, v in params]
    return urlunsplit((scheme, netloc, path, urlencode(redacted, safe="*"), ""))
