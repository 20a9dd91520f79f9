"""Core Playwright benchmark engine.

Handles one page load per iteration: creates a fresh browser context,
installs the banner detector, vitals observers and request interception
before navigation, waits for the page to go quiet, then reads everything
back and aggregates it into an IterationRecord.

Iterations run strictly one after another on a shared browser. A failed
iteration is retried with backoff and dropped once retries run out; the run
only fails when no iteration survives.
"""

from __future__ import annotations

import asyncio
import logging

from playwright.async_api import Browser, Error as PlaywrightError

from .aggregator import aggregate_iteration
from .config import BenchConfig
from .detection import BannerDetector
from .errors import CollectionError
from .models import BenchmarkResult, IterationRecord
from .network import NetworkClassifier
from .resources import ResourceTimingCollector
from .stats import summarize_run
from .utils import add_cache_buster, extract_hostname, now_iso
from .vitals import VitalsCollector

logger = logging.getLogger(__name__)


def _wait_selector(config: BenchConfig) -> str | None:
    if config.test_id:
        return f'[data-testid="{config.test_id}"]'
    if config.element_id:
        return f"#{config.element_id}"
    return None


async def run_iteration(
    browser: Browser,
    config: BenchConfig,
    url: str,
    iteration: int,
    classifier: NetworkClassifier,
) -> IterationRecord:
    """Measure a single page load.

    Errors propagate to the caller, which owns the retry policy.
    The browser context is always closed.
    """
    runner = config.runner
    detector = BannerDetector(config.cookie_banner.selectors, config.detection)
    vitals_collector = VitalsCollector()
    resource_collector = ResourceTimingCollector(config.cookie_banner.service_hosts)
    classifier.reset()

    context = None
    try:
        # Remote targets may need auth headers; local builds get none
        headers = config.remote.headers if config.is_remote else {}
        context = await browser.new_context(extra_http_headers=headers or None)
        page = await context.new_page()
        page.set_default_timeout(runner.navigation_timeout_ms)

        # ── Instrument BEFORE any page JS ──
        await detector.inject(page)
        await vitals_collector.inject(page)
        await classifier.attach(page, url)

        target = add_cache_buster(url)
        logger.debug("Iteration %d: navigating to %s", iteration, target)
        await page.goto(target, wait_until="networkidle", timeout=runner.navigation_timeout_ms)

        selector = _wait_selector(config)
        if selector:
            await page.wait_for_selector(selector, timeout=runner.navigation_timeout_ms)

        # ── Quiescence barrier: nothing is read before the network settles ──
        await page.wait_for_load_state("networkidle", timeout=runner.navigation_timeout_ms)
        await asyncio.sleep(runner.settle_delay_ms / 1000)
        await detector.wait_until_settled(page)

        observation = await detector.collect(page)
        vitals = await vitals_collector.collect(page)
        resources = await resource_collector.collect(page, extract_hostname(url))
        network = classifier.snapshot()

        return aggregate_iteration(iteration, url, vitals, observation, network, resources, config)
    finally:
        if context:
            try:
                await context.close()
            except PlaywrightError as e:
                logger.debug("Context close failed after iteration %d: %s", iteration, e)


async def run_benchmark(browser: Browser, config: BenchConfig, url: str) -> BenchmarkResult:
    """Run every configured iteration sequentially and reduce the results."""
    runner = config.runner
    result = BenchmarkResult(
        name=config.name,
        url=url,
        requested_iterations=config.iterations,
        started_at=now_iso(),
    )
    classifier = NetworkClassifier(config.cookie_banner.service_hosts)

    for iteration in range(1, config.iterations + 1):
        logger.info("Iteration %d/%d: %s", iteration, config.iterations, url)
        for attempt in range(runner.max_retries + 1):
            try:
                record = await asyncio.wait_for(
                    run_iteration(browser, config, url, iteration, classifier),
                    timeout=runner.iteration_timeout_ms / 1000,
                )
            except Exception as e:
                # Any failure counts against the retry budget; cancellation still propagates
                reason = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
                if attempt >= runner.max_retries:
                    logger.warning(
                        "Dropping iteration %d after %d attempt(s): %s",
                        iteration, attempt + 1, reason,
                    )
                    result.dropped_iterations.append(iteration)
                    break
                logger.warning(
                    "Iteration %d failed (%s), retrying - attempt %d/%d",
                    iteration, reason, attempt + 2, runner.max_retries + 1,
                )
                await asyncio.sleep(runner.retry_backoff_ms * (attempt + 1) / 1000)
                continue

            result.records.append(record)
            logger.info(
                "Iteration %d done: banner %s, LCP %.0fms",
                iteration,
                f"at {record.banner.render_time:.0f}ms" if record.banner.detected else "not detected",
                record.timing.largest_contentful_paint,
            )
            break

    if not result.records:
        raise CollectionError(
            f"All {config.iterations} iteration(s) failed for {config.name}; no score can be derived"
        )

    result.summary = summarize_run(
        result.records,
        trim_percent=runner.trim_percent,
        stability_threshold=runner.stability_threshold,
        warning_threshold=runner.warning_threshold,
    )
    result.completed_at = now_iso()
    return result
