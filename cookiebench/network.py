"""Network request interception and first-/third-party classification.

Every request of the page load passes through one route handler. Script
responses are retained individually (size, duration, party); everything else
only feeds the cumulative byte counters. Responses are fulfilled unmodified
apart from a ``timing-allow-origin`` header, so cross-origin resource timing
stays visible to the page.
"""

from __future__ import annotations

import logging
import time

from playwright.async_api import Error as PlaywrightError, Page, Route

from .models import NetworkSample, NetworkSnapshot
from .utils import (
    bytes_to_kb,
    extract_hostname,
    extract_registered_domain,
    is_third_party,
    matches_service_host,
)

logger = logging.getLogger(__name__)


class NetworkClassifier:
    """Classifies requests against the target page's hostname."""

    def __init__(self, service_hosts: list[str] | None = None):
        self._service_hosts = tuple(service_hosts or ())
        self._page_hostname = ""
        self._attached_at = 0.0
        self.reset()

    @property
    def page_hostname(self) -> str:
        return self._page_hostname

    def reset(self) -> None:
        """Clear all per-iteration state."""
        self._samples: list[NetworkSample] = []
        self._total_bytes = 0
        self._first_party_bytes = 0
        self._third_party_bytes = 0
        self._request_count = 0
        self._third_party_request_count = 0
        self._fail_open_count = 0

    async def attach(self, page: Page, target_url: str) -> None:
        """Route every request through the classifier. Call BEFORE page.goto().

        Party is judged against ``target_url``'s hostname, never the frame
        that issued the request.
        """
        self._page_hostname = extract_hostname(target_url)
        self._attached_at = time.monotonic()
        await page.route("**/*", self.handle_route)

    def classify(self, url: str) -> tuple[bool, bool]:
        """Return (is_third_party, is_vendor) for a request URL."""
        third_party = is_third_party(url, self._page_hostname)
        vendor = matches_service_host(extract_hostname(url), self._service_hosts)
        return third_party, vendor

    async def handle_route(self, route: Route) -> None:
        request = route.request
        url = request.url
        started = time.monotonic()

        try:
            response = await route.fetch()
            headers = dict(response.headers)
            headers["timing-allow-origin"] = "*"
            size_bytes = await _response_size(response, headers)
            duration_ms = (time.monotonic() - started) * 1000
            self.record(
                url,
                request.resource_type,
                size_bytes,
                duration_ms,
                (started - self._attached_at) * 1000,
            )
            await route.fulfill(response=response, headers=headers)
        except Exception as e:
            # Fail open: the page load must not depend on the measurement
            self._fail_open_count += 1
            logger.debug("Interception failed for %s, continuing unmodified: %s", url, e)
            try:
                await route.continue_()
            except PlaywrightError as cont_err:
                logger.debug("Could not continue %s: %s", url, cont_err)

    def record(
        self,
        url: str,
        resource_type: str,
        size_bytes: int,
        duration_ms: float,
        start_offset_ms: float,
    ) -> None:
        """Account for one completed request."""
        third_party, vendor = self.classify(url)
        size_bytes = max(0, int(size_bytes))

        self._request_count += 1
        self._total_bytes += size_bytes
        if third_party:
            self._third_party_request_count += 1
            self._third_party_bytes += size_bytes
        else:
            self._first_party_bytes += size_bytes

        if resource_type != "script":
            return

        sample = NetworkSample(
            url=url,
            size_kb=bytes_to_kb(size_bytes),
            duration_ms=max(0.0, duration_ms),
            start_offset_ms=max(0.0, start_offset_ms),
            is_third_party=third_party,
            is_vendor=vendor,
        )
        self._samples.append(sample)
        if third_party:
            logger.debug(
                "Third-party script%s: %s (%.2fKB)",
                " [vendor]" if vendor else "", url, sample.size_kb,
            )

    def snapshot(self) -> NetworkSnapshot:
        """Freeze the samples and counters collected so far."""
        if self._fail_open_count:
            logger.warning(
                "%d request(s) bypassed measurement after interception errors",
                self._fail_open_count,
            )
        return NetworkSnapshot(
            samples=tuple(self._samples),
            total_bytes=self._total_bytes,
            first_party_bytes=self._first_party_bytes,
            third_party_bytes=self._third_party_bytes,
            request_count=self._request_count,
            third_party_request_count=self._third_party_request_count,
        )


def network_impact(samples: tuple[NetworkSample, ...] | list[NetworkSample]) -> dict:
    """Summarise script traffic: totals, third-party share and vendor share."""
    third_party = [s for s in samples if s.is_third_party]
    vendor = [s for s in samples if s.is_vendor]
    other = [s for s in third_party if not s.is_vendor]
    domains = {extract_registered_domain(extract_hostname(s.url)) for s in third_party}
    return {
        "total_kb": sum(s.size_kb for s in samples),
        "total_download_ms": sum(s.duration_ms for s in samples),
        "script_requests": len(samples),
        "third_party_kb": sum(s.size_kb for s in third_party),
        "vendor_kb": sum(s.size_kb for s in vendor),
        "vendor_requests": len(vendor),
        "vendor_download_ms": sum(s.duration_ms for s in vendor),
        "other_third_party_kb": sum(s.size_kb for s in other),
        "other_third_party_requests": len(other),
        "third_party_domains": len(domains - {""}),
    }


async def _response_size(response, headers: dict) -> int:
    content_length = headers.get("content-length")
    if content_length:
        try:
            return int(content_length)
        except ValueError:
            pass
    body = await response.body()
    return len(body)
