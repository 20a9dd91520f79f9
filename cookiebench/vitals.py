"""Core Web Vitals collection.

Registers PerformanceObservers before any page script runs and reads them
back in one call once the page is quiescent. Metrics the browser never
reports come back as ``None``.
"""

from __future__ import annotations

import logging

from playwright.async_api import Error as PlaywrightError, Page

from .models import CoreWebVitals

logger = logging.getLogger(__name__)

READER_NAME = "__cookiebenchReadVitals"

# Long tasks count towards blocking time only beyond this budget
LONG_TASK_BUDGET_MS = 50

_VITALS_INIT_SCRIPT = """
(() => {
    'use strict';
    if (window.top !== window) return;
    if (Object.prototype.hasOwnProperty.call(window, '%(reader)s')) return;

    const vitals = {
        firstPaint: null,
        firstContentfulPaint: null,
        largestContentfulPaint: null,
        cumulativeLayoutShift: 0,
        totalBlockingTime: 0,
        interactionToNextPaint: null,
        layoutShiftSupported: false,
    };

    const observe = (type, callback) => {
        try {
            new PerformanceObserver((list) => list.getEntries().forEach(callback))
                .observe({ type: type, buffered: true });
            return true;
        } catch (e) {
            return false;
        }
    };

    observe('paint', (entry) => {
        if (entry.name === 'first-paint') vitals.firstPaint = entry.startTime;
        if (entry.name === 'first-contentful-paint') vitals.firstContentfulPaint = entry.startTime;
    });
    observe('largest-contentful-paint', (entry) => {
        vitals.largestContentfulPaint = entry.renderTime || entry.loadTime || entry.startTime;
    });
    vitals.layoutShiftSupported = observe('layout-shift', (entry) => {
        if (!entry.hadRecentInput) vitals.cumulativeLayoutShift += entry.value;
    });
    observe('longtask', (entry) => {
        vitals.totalBlockingTime += Math.max(0, entry.duration - %(budget)d);
    });
    observe('event', (entry) => {
        if (!entry.interactionId) return;
        if (vitals.interactionToNextPaint === null || entry.duration > vitals.interactionToNextPaint) {
            vitals.interactionToNextPaint = entry.duration;
        }
    });

    Object.defineProperty(window, '%(reader)s', {
        value: () => {
            const nav = performance.getEntriesByType('navigation')[0];
            const offset = (value) => (nav && value > 0 ? value - nav.startTime : null);
            return {
                firstPaint: vitals.firstPaint,
                firstContentfulPaint: vitals.firstContentfulPaint,
                largestContentfulPaint: vitals.largestContentfulPaint,
                cumulativeLayoutShift: vitals.layoutShiftSupported ? vitals.cumulativeLayoutShift : null,
                totalBlockingTime: vitals.totalBlockingTime,
                interactionToNextPaint: vitals.interactionToNextPaint,
                timeToFirstByte: nav ? nav.responseStart - nav.startTime : null,
                domInteractive: nav ? offset(nav.domInteractive) : null,
                domContentLoaded: nav ? offset(nav.domContentLoadedEventEnd) : null,
                domComplete: nav ? offset(nav.domComplete) : null,
                loadEventEnd: nav ? offset(nav.loadEventEnd) : null,
            };
        },
        enumerable: false,
        configurable: false,
        writable: false,
    });
})();
""" % {"reader": READER_NAME, "budget": LONG_TASK_BUDGET_MS}

_FIELDS = {
    "firstPaint": "first_paint",
    "firstContentfulPaint": "first_contentful_paint",
    "largestContentfulPaint": "largest_contentful_paint",
    "cumulativeLayoutShift": "cumulative_layout_shift",
    "totalBlockingTime": "total_blocking_time",
    "timeToFirstByte": "time_to_first_byte",
    "interactionToNextPaint": "interaction_to_next_paint",
    "domInteractive": "dom_interactive",
    "domContentLoaded": "dom_content_loaded",
    "domComplete": "dom_complete",
    "loadEventEnd": "load_event_end",
}


def vitals_from_raw(raw: dict | None) -> CoreWebVitals:
    """Map the in-page snapshot onto CoreWebVitals, dropping non-numeric values."""
    if not raw:
        return CoreWebVitals()
    values = {}
    for key, field_name in _FIELDS.items():
        value = raw.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            values[field_name] = None
        else:
            values[field_name] = float(value)
    return CoreWebVitals(**values)


class VitalsCollector:
    """Collects paint, layout-shift, blocking and navigation timing metrics."""

    async def inject(self, page: Page) -> None:
        """Install the observers. Call BEFORE page.goto()."""
        await page.add_init_script(script=_VITALS_INIT_SCRIPT)

    async def collect(self, page: Page) -> CoreWebVitals:
        try:
            raw = await page.evaluate(
                "(name) => (typeof window[name] === 'function' ? window[name]() : null)",
                READER_NAME,
            )
        except PlaywrightError as e:
            logger.warning("Core Web Vitals could not be read: %s", e)
            return CoreWebVitals()
        logger.debug("Raw vitals snapshot: %s", raw)
        return vitals_from_raw(raw)
