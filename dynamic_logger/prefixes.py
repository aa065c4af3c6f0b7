from __future__ import annotations

import json
from typing import Any, Iterable, Mapping


REDACTED = "****"

INI_MARKER = "[INI]"
END_MARKER = "[END]"
NOT_FOUND_MARKER = "[NOT_FOUND]"

# Headers every browser sends; dropped when deep header capture is off.
BROWSER_HEADERS = frozenset(
    {
        "accept",
        "accept-language",
        "accept-encoding",
        "connection",
        "host",
        "user-agent",
        "referer",
        "origin",
        "cookie",
        "upgrade-insecure-requests",
        "sec-fetch-site",
        "sec-fetch-mode",
        "sec-fetch-user",
        "sec-fetch-dest",
        "content-type",
        "content-length",
        "cache-control",
        "if-none-match",
        "if-modified-since",
        "accept-ranges",
        "pragma",
        "expires",
        "sec-ch-ua",
        "sec-ch-ua-mobile",
        "sec-ch-ua-platform",
    }
)


def build_prefix(*parts: str | None) -> str:
    """Join the non-empty parts with one space and pad with two trailing spaces.

    >>> build_prefix("api", "[END]", "")
    'api [END]  '
    >>> build_prefix("", None)
    ''
    """

    non_empty = [part for part in parts if part]
    if not non_empty:
        return ""
    return " ".join(non_empty) + "  "


def status_category(status_code: int) -> int:
    return (int(status_code) // 100) * 100


def redact_headers(view: dict[str, Any], redact: Iterable[str]) -> dict[str, Any]:
    """Mask redacted header values in place. Applying it twice is a no-op."""

    names = {name.lower() for name in redact}
    for key in view:
        if key.lower() in names:
            view[key] = REDACTED
    return view


def sanitize_headers(
    headers: Mapping[str, Any],
    *,
    deep: bool = True,
    redact: Iterable[str] = (),
) -> dict[str, Any]:
    if deep:
        view = dict(headers)
    else:
        view = {key: value for key, value in headers.items() if key.lower() not in BROWSER_HEADERS}
    return redact_headers(view, redact)


def collapse_items(items: Iterable[tuple[str, str]]) -> dict[str, str | list[str]]:
    """Group repeated keys into lists, keep single values as plain strings."""

    grouped: dict[str, str | list[str]] = {}
    for key, value in items:
        if key not in grouped:
            grouped[key] = value
            continue
        existing = grouped[key]
        if isinstance(existing, list):
            existing.append(value)
        else:
            grouped[key] = [existing, value]
    return grouped


_TEXTUAL_MARKERS = ("json", "xml", "javascript", "x-www-form-urlencoded")


def is_textual(content_type: str | None, content_encoding: str | None = None) -> bool:
    """Whether a body is worth logging as text. A missing content type counts as text."""

    if content_encoding and content_encoding.strip().lower() != "identity":
        return False
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type.startswith("text/") or any(marker in media_type for marker in _TEXTUAL_MARKERS)


def decode_body(body: bytes | str | None) -> str | None:
    if body is None:
        return None
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def parse_body(body: bytes | str | None) -> Any:
    """Return the JSON value of ``body`` when it parses, the raw text otherwise."""

    text = decode_body(body)
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text
