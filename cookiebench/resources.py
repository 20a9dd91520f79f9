"""Resource timing snapshot and classification.

The page only reports raw entries; party and vendor classification happens
here against the target hostname, the same rule the network classifier uses.
"""

from __future__ import annotations

import logging

from playwright.async_api import Error as PlaywrightError, Page

from .models import ResourceEntry, ResourceTimingSnapshot, ResourceType
from .utils import extract_hostname, is_third_party, matches_service_host

logger = logging.getLogger(__name__)

_RESOURCE_TIMING_SCRIPT = """
() => {
    const nav = performance.getEntriesByType('navigation')[0];
    const navigationStart = nav ? nav.startTime : 0;
    const entries = performance.getEntriesByType('resource').map((entry) => ({
        name: entry.name,
        initiatorType: entry.initiatorType,
        transferSize: entry.transferSize || 0,
        encodedBodySize: entry.encodedBodySize || 0,
        duration: entry.duration,
        startTime: entry.startTime - navigationStart,
    }));
    const lang = (document.documentElement.getAttribute('lang') || '').trim();
    return {
        navigationStart: navigationStart,
        domContentLoaded: nav ? nav.domContentLoadedEventEnd - navigationStart : 0,
        load: nav ? nav.loadEventEnd - navigationStart : 0,
        entries: entries,
        language: lang || navigator.language || (navigator.languages || [])[0] || 'en',
    };
}
"""

_FONT_EXTENSIONS = (".woff", ".woff2", ".ttf", ".otf", ".eot")


def resource_type_for(initiator_type: str, url: str) -> ResourceType:
    """Bucket a resource by its initiator, falling back to the URL extension."""
    path = url.split("?", 1)[0].split("#", 1)[0].lower()
    if initiator_type == "script":
        return ResourceType.SCRIPT
    if initiator_type == "link" and path.endswith(".css"):
        return ResourceType.STYLE
    if initiator_type == "css" and path.endswith(_FONT_EXTENSIONS):
        return ResourceType.FONT
    if initiator_type in ("img", "image"):
        return ResourceType.IMAGE
    if initiator_type == "font":
        return ResourceType.FONT
    return ResourceType.OTHER


def snapshot_from_raw(
    raw: dict | None,
    page_hostname: str,
    service_hosts: list[str] | tuple[str, ...] = (),
) -> ResourceTimingSnapshot:
    if not raw:
        return ResourceTimingSnapshot()

    dom_content_loaded = float(raw.get("domContentLoaded") or 0.0)
    entries = []
    for item in raw.get("entries") or []:
        name = str(item.get("name", ""))
        initiator = str(item.get("initiatorType", ""))
        size = int(item.get("transferSize") or item.get("encodedBodySize") or 0)
        start = float(item.get("startTime") or 0.0)
        entries.append(ResourceEntry(
            name=name,
            resource_type=resource_type_for(initiator, name),
            initiator_type=initiator,
            size_bytes=max(0, size),
            duration_ms=max(0.0, float(item.get("duration") or 0.0)),
            start_ms=start,
            is_third_party=is_third_party(name, page_hostname),
            is_vendor=matches_service_host(extract_hostname(name), service_hosts),
            is_dynamic=start >= dom_content_loaded,
        ))

    return ResourceTimingSnapshot(
        navigation_start=float(raw.get("navigationStart") or 0.0),
        dom_content_loaded=dom_content_loaded,
        load=float(raw.get("load") or 0.0),
        entries=tuple(entries),
        language=str(raw.get("language") or "en"),
    )


class ResourceTimingCollector:
    """Reads the page's resource timing buffer after network idle."""

    def __init__(self, service_hosts: list[str] | None = None):
        self._service_hosts = tuple(service_hosts or ())

    async def collect(self, page: Page, page_hostname: str) -> ResourceTimingSnapshot:
        try:
            raw = await page.evaluate(_RESOURCE_TIMING_SCRIPT)
        except PlaywrightError as e:
            logger.warning("Resource timing could not be read: %s", e)
            return ResourceTimingSnapshot()
        snapshot = snapshot_from_raw(raw, page_hostname, self._service_hosts)
        logger.debug(
            "Resource timing: %d entries, %d third-party",
            len(snapshot.entries), sum(1 for e in snapshot.entries if e.is_third_party),
        )
        return snapshot
