"""Utility functions for hostname handling, unit conversion and formatting."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import tldextract

BYTES_PER_KB = 1024
PERCENTAGE = 100

# Offline extractor: use the bundled public suffix snapshot, never fetch it.
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())


def extract_hostname(url: str) -> str:
    """Extract the lower-cased hostname from a URL."""
    try:
        parsed = urlparse(url)
        return (parsed.hostname or "").lower()
    except ValueError:
        return ""


def extract_registered_domain(url_or_domain: str) -> str:
    """Extract the registered domain from a URL or domain string.

    Examples:
        'https://cdn.cookielaw.org/x.js' -> 'cookielaw.org'
        'localhost' -> 'localhost'
    """
    ext = _EXTRACT(url_or_domain)
    if ext.registered_domain:
        return ext.registered_domain
    host = extract_hostname(url_or_domain if "://" in url_or_domain else f"https://{url_or_domain}")
    return host or url_or_domain


def is_third_party(request_url: str, page_hostname: str) -> bool:
    """Classify a request by exact hostname comparison with the page under test.

    Substring checks against the full URL are never used: a third-party URL
    can carry the page hostname in its path or query.
    """
    return extract_hostname(request_url) != page_hostname.lower()


def matches_service_host(hostname: str, service_hosts: list[str] | tuple[str, ...]) -> bool:
    """True when hostname equals a service host or is one of its subdomains."""
    hostname = hostname.lower()
    for host in service_hosts:
        host = host.lower().strip().lstrip(".")
        if "://" in host:
            host = extract_hostname(host)
        if not host:
            continue
        if hostname == host or hostname.endswith("." + host):
            return True
    return False


def add_cache_buster(url: str, stamp: int | None = None) -> str:
    """Append a ``t=<stamp>`` query parameter so each iteration skips caches."""
    stamp = time.time_ns() if stamp is None else stamp
    parts = urlparse(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "t"]
    query.append(("t", str(stamp)))
    return urlunparse(parts._replace(query=urlencode(query)))


def bytes_to_kb(size_bytes: float) -> float:
    return size_bytes / BYTES_PER_KB


def format_time(ms: float) -> str:
    """Format milliseconds as '250ms' or '1.25s'."""
    if ms < 1000:
        return f"{round(ms)}ms"
    return f"{ms / 1000:.2f}s"


def format_bytes(size_bytes: float) -> str:
    """Format a byte count with the largest fitting unit."""
    if size_bytes <= 0:
        return "0 bytes"
    units = ["bytes", "KB", "MB", "GB"]
    value = float(size_bytes)
    index = 0
    while value >= BYTES_PER_KB and index < len(units) - 1:
        value /= BYTES_PER_KB
        index += 1
    return f"{float(f'{value:.2f}'):g} {units[index]}"


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()
