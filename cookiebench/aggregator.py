"""Per-iteration metric aggregation.

Merges the browser-reported vitals, the banner observation, the classifier's
network snapshot and the resource timing snapshot into one immutable
IterationRecord. Pure: no page access, no clock.
"""

from __future__ import annotations

import logging

from .config import BenchConfig, CookieBannerSettings, TechStack
from .models import (
    BannerBlock,
    BannerObservation,
    BundleStrategy,
    CoreWebVitals,
    IterationRecord,
    NetworkSnapshot,
    ResourceTimingSnapshot,
    ResourceType,
    SizeBlock,
    ThirdPartyBlock,
    TimingBlock,
)
from .network import network_impact
from .utils import PERCENTAGE

logger = logging.getLogger(__name__)

_BUNDLED_TYPES = frozenset({"esm", "cjs", "bundled"})


def determine_bundle_strategy(tech_stack: TechStack | None) -> BundleStrategy:
    """Classify the banner's delivery from the declared ``bundleType``.

    ``iife`` means the banner ships as an external script and wins over any
    bundled marker listed alongside it.
    """
    if tech_stack is None:
        return BundleStrategy.UNKNOWN
    raw = tech_stack.bundle_type
    if isinstance(raw, str):
        types = {raw.lower()}
    else:
        types = {str(t).lower() for t in raw or []}
    if "iife" in types:
        return BundleStrategy.IIFE
    if types & _BUNDLED_TYPES:
        return BundleStrategy.BUNDLED
    return BundleStrategy.UNKNOWN


def calculate_tti(
    vitals: CoreWebVitals,
    banner: BannerObservation,
    buffer_ms: float = 1000,
) -> float:
    """Conservative time-to-interactive estimate.

    None of FCP, DOM complete or banner interactivity proves the main thread
    is free, so the latest of them is padded with a fixed buffer.
    """
    signals = [
        vitals.first_contentful_paint or 0.0,
        vitals.dom_complete or 0.0,
        banner.interactive_offset_ms if banner.detected else 0.0,
    ]
    return max(signals) + buffer_ms


def regulatory_friction_delay(banner: BannerObservation, ttfb: float | None) -> float | None:
    """Banner render offset minus TTFB; only defined when both are positive.

    Approximation: a banner baked into the first HTML chunk can yield a value
    near zero or below, which is reported as-is.
    """
    if not banner.detected or not ttfb or ttfb <= 0 or banner.render_offset_ms <= 0:
        return None
    return banner.render_offset_ms - ttfb


def _size_block(network: NetworkSnapshot, resources: ResourceTimingSnapshot) -> SizeBlock:
    by_type = {t: 0 for t in ResourceType}
    bundled = initial = dynamic = resource_third_party = 0
    for entry in resources.entries:
        by_type[entry.resource_type] += entry.size_bytes
        if entry.is_third_party:
            resource_third_party += entry.size_bytes
        if entry.resource_type is ResourceType.SCRIPT:
            if not entry.is_third_party:
                bundled += entry.size_bytes
            if entry.is_dynamic:
                dynamic += entry.size_bytes
            else:
                initial += entry.size_bytes

    # Interception sees every response; resource timing hides opaque sizes
    total = network.total_bytes or sum(by_type.values())
    third_party = network.third_party_bytes or resource_third_party

    return SizeBlock(
        total_bytes=max(0, total),
        bundled_bytes=max(0, bundled),
        third_party_bytes=max(0, third_party),
        script_bytes=max(0, by_type[ResourceType.SCRIPT]),
        initial_script_bytes=max(0, initial),
        dynamic_script_bytes=max(0, dynamic),
        style_bytes=max(0, by_type[ResourceType.STYLE]),
        image_bytes=max(0, by_type[ResourceType.IMAGE]),
        font_bytes=max(0, by_type[ResourceType.FONT]),
        other_bytes=max(0, by_type[ResourceType.OTHER]),
    )


def _banner_block(
    iteration: int,
    observation: BannerObservation,
    settings: CookieBannerSettings,
) -> BannerBlock:
    """Reshape the observation for reporting, honouring the cookieBanner switches.

    ``wait_for_visibility`` off reports visibility at render time,
    ``measure_viewport_coverage`` off reports zero coverage, and
    ``expected_layout_shift`` silences the banner layout-shift warning.
    """
    visibility = observation.visible_offset_ms
    if not settings.wait_for_visibility:
        visibility = observation.render_offset_ms
    coverage = observation.viewport_coverage_percent if settings.measure_viewport_coverage else 0.0

    if observation.detected and observation.layout_shift_delta > 0 and not settings.expected_layout_shift:
        logger.warning(
            "Iteration %d: banner %s shifted layout by %.3f",
            iteration, observation.selector, observation.layout_shift_delta,
        )

    return BannerBlock(
        detected=observation.detected,
        selector=observation.selector,
        service_name=settings.service_name,
        render_time=observation.render_offset_ms,
        visibility_time=visibility,
        interactive_time=observation.interactive_offset_ms,
        hydration_time=observation.hydration_ms,
        layout_shift=observation.layout_shift_delta,
        viewport_coverage=coverage,
    )


def aggregate_iteration(
    iteration: int,
    url: str,
    vitals: CoreWebVitals,
    observation: BannerObservation,
    network: NetworkSnapshot,
    resources: ResourceTimingSnapshot,
    config: BenchConfig,
) -> IterationRecord:
    """Build the canonical record for one page load."""
    impact = network_impact(network.samples)
    tbt = vitals.total_blocking_time or 0.0

    # Vendor script download time stands in for the banner's share of blocking
    blocking_estimate = impact["vendor_download_ms"]
    blocking_percent = min(PERCENTAGE, blocking_estimate / tbt * PERCENTAGE) if tbt > 0 else 0.0

    timing = TimingBlock(
        navigation_start=resources.navigation_start,
        dom_content_loaded=vitals.dom_content_loaded or resources.dom_content_loaded,
        dom_complete=vitals.dom_complete or 0.0,
        load=vitals.load_event_end or resources.load,
        first_paint=vitals.first_paint or 0.0,
        first_contentful_paint=vitals.first_contentful_paint or 0.0,
        largest_contentful_paint=vitals.largest_contentful_paint or 0.0,
        cumulative_layout_shift=vitals.cumulative_layout_shift or 0.0,
        total_blocking_time=tbt,
        time_to_first_byte=vitals.time_to_first_byte or 0.0,
        interaction_to_next_paint=vitals.interaction_to_next_paint,
        time_to_interactive=calculate_tti(vitals, observation, config.runner.tti_buffer_ms),
        regulatory_friction_delay=regulatory_friction_delay(observation, vitals.time_to_first_byte),
        banner_blocking_estimate=blocking_estimate,
        banner_blocking_percent=blocking_percent,
    )

    banner = _banner_block(iteration, observation, config.cookie_banner)

    third_party = ThirdPartyBlock(
        vendor_hosts=tuple(config.cookie_banner.service_hosts),
        vendor_size_kb=impact["vendor_kb"],
        vendor_request_count=impact["vendor_requests"],
        vendor_download_ms=impact["vendor_download_ms"],
        other_size_kb=impact["other_third_party_kb"],
        other_request_count=impact["other_third_party_requests"],
        script_size_kb=impact["total_kb"],
        script_download_ms=impact["total_download_ms"],
        script_request_count=impact["script_requests"],
        third_party_domains=impact["third_party_domains"],
    )

    record = IterationRecord(
        iteration=iteration,
        url=url,
        timing=timing,
        size=_size_block(network, resources),
        resources=resources.entries,
        banner=banner,
        third_party=third_party,
        language=resources.language,
    )
    _log_digest(record)
    return record


def _log_digest(record: IterationRecord) -> None:
    t = record.timing
    b = record.banner
    logger.debug(
        "Iteration %d: FCP=%.0fms LCP=%.0fms CLS=%.3f TBT=%.0fms TTI=%.0fms "
        "banner=%s render=%.0fms visible=%.0fms interactive=%.0fms size=%dB",
        record.iteration, t.first_contentful_paint, t.largest_contentful_paint,
        t.cumulative_layout_shift, t.total_blocking_time, t.time_to_interactive,
        b.selector if b.detected else "none", b.render_time, b.visibility_time,
        b.interactive_time, record.size.total_bytes,
    )
