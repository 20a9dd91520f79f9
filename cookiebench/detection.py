"""Cookie banner detection.

Injects a detector into the page before any site code executes. The detector
watches for the first configured selector whose element renders, then keeps
sampling that element until it is readable (computed opacity above the
threshold) and interactive (an actionable descendant with a layout box).

All detector state lives inside one closure. The only thing exposed on the
page is a non-enumerable reader function, called once by ``collect``.

States: idle -> armed -> polling <-> mutation recheck -> detected -> complete.
A banner is never un-detected.
"""

from __future__ import annotations

import json
import logging

from playwright.async_api import Error as PlaywrightError, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .config import DetectionSettings
from .models import BannerObservation

logger = logging.getLogger(__name__)

READER_NAME = "__cookiebenchReadBanner"

# Slack on top of the in-page deadline before giving up on the detector
_SETTLE_MARGIN_MS = 1000

_DETECTION_INIT_SCRIPT = """
(config) => {
    'use strict';
    if (window.top !== window) return;  // main frame only
    if (Object.prototype.hasOwnProperty.call(window, config.readerName)) return;

    const selectors = config.selectors;
    const state = {
        phase: 'idle',
        detected: false,
        selector: null,
        element: null,
        renderAt: 0,
        visibleAt: 0,
        interactiveAt: 0,
        shiftBeforeDetection: 0,
        cumulativeShift: 0,
        attempts: 0,
    };
    let pollTimer = null;
    let deadlineTimer = null;
    let recheckTimer = null;
    let mutationQueued = false;
    let mutationObserver = null;

    // Installed before navigation so shifts in the first paint are counted
    try {
        new PerformanceObserver((list) => {
            for (const entry of list.getEntries()) {
                if (!entry.hadRecentInput) state.cumulativeShift += entry.value;
            }
        }).observe({ type: 'layout-shift', buffered: true });
    } catch (e) {}
    state.phase = 'armed';

    const isRendered = (el) => {
        const rect = el.getBoundingClientRect();
        if (rect.width <= 0 || rect.height <= 0) return false;
        const style = window.getComputedStyle(el);
        return style.visibility !== 'hidden' && style.display !== 'none';
    };

    // Opacity multiplies down the tree, so a fading wrapper hides its banner
    const effectiveOpacity = (el) => {
        let opacity = 1;
        for (let node = el; node && node.nodeType === 1; node = node.parentElement) {
            const value = parseFloat(window.getComputedStyle(node).opacity);
            if (!Number.isNaN(value)) opacity *= value;
        }
        return opacity;
    };

    const hasActionableControl = (el) => {
        const controls = el.querySelectorAll('button, a, [role="button"], [onclick]');
        for (const control of controls) {
            if (!control.isConnected) continue;
            const rect = control.getBoundingClientRect();
            if (rect.width > 0 && rect.height > 0) return true;
        }
        return false;
    };

    const stopWatching = () => {
        if (pollTimer !== null) clearInterval(pollTimer);
        if (deadlineTimer !== null) clearTimeout(deadlineTimer);
        if (recheckTimer !== null) clearTimeout(recheckTimer);
        if (mutationObserver) mutationObserver.disconnect();
        pollTimer = deadlineTimer = recheckTimer = null;
        mutationObserver = null;
    };

    const finish = () => {
        stopWatching();
        state.phase = 'complete';
    };

    const findBanner = (timestamp) => {
        for (const selector of selectors) {
            let el = null;
            try {
                el = document.querySelector(selector);
            } catch (e) {
                continue;  // invalid selector
            }
            if (el && isRendered(el)) {
                state.detected = true;
                state.selector = selector;
                state.element = el;
                state.renderAt = timestamp;
                state.shiftBeforeDetection = state.cumulativeShift;
                state.phase = 'detected';
                if (pollTimer !== null) clearInterval(pollTimer);
                pollTimer = null;
                if (mutationObserver) mutationObserver.disconnect();
                mutationObserver = null;
                return true;
            }
        }
        return false;
    };

    const check = () => {
        if (state.phase === 'complete') return;
        const timestamp = performance.now();
        state.attempts += 1;
        if (!state.detected && !findBanner(timestamp)) return;

        const el = state.element;
        if (!el.isConnected) {
            finish();  // removed before it settled
            return;
        }
        if (!state.visibleAt && effectiveOpacity(el) > config.opacityThreshold) {
            state.visibleAt = timestamp;
        }
        if (!state.interactiveAt && hasActionableControl(el)) {
            state.interactiveAt = timestamp;
        }
        if (state.visibleAt && state.interactiveAt) {
            finish();
            return;
        }
        // Fading or hydrating: re-sample on a timer, never block the thread
        if (recheckTimer === null) {
            recheckTimer = setTimeout(() => {
                recheckTimer = null;
                check();
            }, config.recheckInterval);
        }
    };

    const scheduleFromMutation = () => {
        if (mutationQueued || state.detected) return;
        mutationQueued = true;
        setTimeout(() => {
            mutationQueued = false;
            check();
        }, 0);
    };

    const touchesSelector = (node) => {
        if (!node || node.nodeType !== 1) return false;
        for (const selector of selectors) {
            try {
                if (node.matches(selector) || node.querySelector(selector)) return true;
            } catch (e) {}
        }
        return false;
    };

    const start = () => {
        state.phase = 'polling';
        deadlineTimer = setTimeout(finish, config.timeout);
        check();
        if (state.detected) return;

        pollTimer = setInterval(check, config.pollInterval);
        if ('MutationObserver' in window) {
            mutationObserver = new MutationObserver((mutations) => {
                if (state.detected) return;
                for (const mutation of mutations) {
                    if (mutation.type === 'attributes' && touchesSelector(mutation.target)) {
                        scheduleFromMutation();
                        return;
                    }
                    for (const node of mutation.addedNodes) {
                        if (touchesSelector(node)) {
                            scheduleFromMutation();
                            return;
                        }
                    }
                }
            });
            mutationObserver.observe(document.documentElement, {
                childList: true,
                subtree: true,
                attributes: true,
                attributeFilter: ['style', 'class', 'hidden', 'open'],
            });
        }
    };

    const viewportCoverage = () => {
        const el = state.element;
        if (!el || !el.isConnected) return 0;
        const rect = el.getBoundingClientRect();
        const vw = window.innerWidth;
        const vh = window.innerHeight;
        if (vw <= 0 || vh <= 0) return 0;
        const width = Math.max(0, Math.min(rect.right, vw) - Math.max(rect.left, 0));
        const height = Math.max(0, Math.min(rect.bottom, vh) - Math.max(rect.top, 0));
        return (width * height) / (vw * vh) * 100;
    };

    Object.defineProperty(window, config.readerName, {
        value: () => ({
            phase: state.phase,
            attempts: state.attempts,
            detected: state.detected,
            selector: state.selector,
            renderAt: state.renderAt,
            visibleAt: state.visibleAt,
            interactiveAt: state.interactiveAt,
            layoutShiftDelta: state.detected
                ? state.cumulativeShift - state.shiftBeforeDetection : 0,
            viewportCoverage: state.detected ? viewportCoverage() : 0,
        }),
        enumerable: false,
        configurable: false,
        writable: false,
    });

    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', start, { once: true });
    } else {
        start();
    }
}
"""


def _number(raw: dict, key: str) -> float:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def observation_from_raw(raw: dict | None) -> BannerObservation:
    """Normalise the detector's raw snapshot into a BannerObservation.

    Enforces: undetected means zero offsets and no selector; visibility falls
    back to the render time when the opacity threshold was never crossed and
    is never earlier than render; interactivity is zero or at/after render.
    """
    if not raw or not raw.get("detected") or not raw.get("selector"):
        return BannerObservation()

    render = max(0.0, _number(raw, "renderAt"))
    visible = _number(raw, "visibleAt")
    if visible <= 0 or visible < render:
        visible = render
    interactive = _number(raw, "interactiveAt")
    if interactive <= 0:
        interactive = 0.0
    elif interactive < render:
        interactive = render

    coverage = min(100.0, max(0.0, _number(raw, "viewportCoverage")))

    return BannerObservation(
        detected=True,
        selector=str(raw["selector"]),
        render_offset_ms=render,
        visible_offset_ms=visible,
        interactive_offset_ms=interactive,
        layout_shift_delta=_number(raw, "layoutShiftDelta"),
        viewport_coverage_percent=coverage,
    )


class BannerDetector:
    """Detects a cookie banner and timestamps its render milestones."""

    def __init__(self, selectors: list[str], settings: DetectionSettings):
        self._selectors = list(selectors)
        self._settings = settings

    def script_args(self) -> dict:
        return {
            "readerName": READER_NAME,
            "selectors": self._selectors,
            "pollInterval": self._settings.poll_interval_ms,
            "timeout": self._settings.timeout_ms,
            "opacityThreshold": self._settings.opacity_threshold,
            "recheckInterval": self._settings.visibility_recheck_ms,
        }

    async def inject(self, page: Page) -> None:
        """Install the detector. Call BEFORE page.goto()."""
        await page.add_init_script(script=_wrap_init_script(_DETECTION_INIT_SCRIPT, self.script_args()))

    async def wait_until_settled(self, page: Page) -> None:
        """Wait for the detector to finish or its own deadline to pass."""
        try:
            await page.wait_for_function(
                "(name) => { const read = window[name];"
                " return typeof read !== 'function' || read().phase === 'complete'; }",
                arg=READER_NAME,
                timeout=self._settings.timeout_ms + _SETTLE_MARGIN_MS,
            )
        except PlaywrightTimeoutError:
            logger.debug("Banner detector still running after %dms", self._settings.timeout_ms)

    async def collect(self, page: Page) -> BannerObservation:
        """Read the detector state once. Call after the page is quiescent."""
        try:
            raw = await page.evaluate(
                "(name) => (typeof window[name] === 'function' ? window[name]() : null)",
                READER_NAME,
            )
        except PlaywrightError as e:
            logger.warning("Banner detector could not be read: %s", e)
            return BannerObservation()

        logger.debug("Raw banner snapshot: %s", raw)
        if raw is None:
            logger.warning("Banner detector was not installed on %s", page.url)
        observation = observation_from_raw(raw)
        if not observation.detected:
            logger.debug("No banner matched selectors %s", self._selectors)
        return observation


def _wrap_init_script(function_source: str, args: dict) -> str:
    """Serialise a JS function and its arguments into a self-invoking script."""
    return f"({function_source.strip()})({json.dumps(args)});"
