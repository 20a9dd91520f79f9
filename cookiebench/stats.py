"""Cross-iteration statistics.

Averages are outlier-trimmed means; spread is the population standard
deviation; stability is the coefficient of variation compared strictly
(``cv < threshold``) against a configurable limit.
"""

from __future__ import annotations

import logging
import math
from typing import Callable

from .models import IterationRecord, MetricSummary, RunSummary
from .utils import PERCENTAGE, bytes_to_kb

logger = logging.getLogger(__name__)

DEFAULT_TRIM_PERCENT = 10.0
DEFAULT_STABILITY_THRESHOLD = 15.0
DEFAULT_WARNING_THRESHOLD = 20.0


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


def _stddev(values: list[float]) -> float:
    m = _mean(values)
    return math.sqrt(sum((v - m) ** 2 for v in values) / len(values))


def median(sorted_values: list[float]) -> float:
    mid = len(sorted_values) // 2
    if len(sorted_values) % 2 == 0:
        return (sorted_values[mid - 1] + sorted_values[mid]) / 2
    return sorted_values[mid]


def percentile(sorted_values: list[float], p: float) -> float:
    """Linear interpolation between closest ranks."""
    index = p / PERCENTAGE * (len(sorted_values) - 1)
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return sorted_values[lower]
    weight = index - lower
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


def trimmed_mean(values: list[float], trim_percent: float = DEFAULT_TRIM_PERCENT) -> float:
    """Mean after dropping ``ceil(n * trim_percent / 100)`` samples from each tail.

    Two samples or fewer are averaged untrimmed. At least one sample always
    survives the trim, and a constant series returns its value exactly.

    Rounding up means the 10 % default cuts more than 10 % on sizes that are
    not multiples of ten: one per tail at n=5, two per tail (about 18 %) at
    n=11.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    if ordered[0] == ordered[-1]:
        return ordered[0]
    n = len(ordered)
    if n <= 2 or trim_percent <= 0:
        return _mean(ordered)

    trim = min(math.ceil(n * trim_percent / PERCENTAGE), (n - 1) // 2)
    return _mean(ordered[trim:n - trim])


def coefficient_of_variation(values: list[float]) -> float:
    """Standard deviation as a percentage of the mean; 0 for an empty or zero-mean series."""
    if not values:
        return 0.0
    m = _mean(values)
    if m == 0:
        return 0.0
    return _stddev(values) * PERCENTAGE / m


def is_stable(values: list[float], threshold: float = DEFAULT_STABILITY_THRESHOLD) -> bool:
    return coefficient_of_variation(values) < threshold


def calculate_statistics(
    name: str,
    values: list[float],
    trim_percent: float = DEFAULT_TRIM_PERCENT,
    stability_threshold: float = DEFAULT_STABILITY_THRESHOLD,
) -> MetricSummary:
    if not values:
        raise ValueError(f"No samples for metric {name!r}")
    ordered = sorted(values)
    cv = coefficient_of_variation(ordered)
    return MetricSummary(
        name=name,
        samples=len(ordered),
        mean=trimmed_mean(ordered, trim_percent),
        raw_mean=_mean(ordered),
        stddev=_stddev(ordered),
        median=median(ordered),
        p95=percentile(ordered, 95),
        p99=percentile(ordered, 99),
        min=ordered[0],
        max=ordered[-1],
        cv=cv,
        stable=len(ordered) == 1 or cv < stability_threshold,
    )


def _banner(field_name: str) -> Callable[[IterationRecord], float | None]:
    def extract(record: IterationRecord) -> float | None:
        return getattr(record.banner, field_name) if record.banner.detected else None
    return extract


# Metric name -> per-record value. ``None`` means not reported for that iteration.
METRIC_EXTRACTORS: dict[str, Callable[[IterationRecord], float | None]] = {
    "fcp": lambda r: r.timing.first_contentful_paint or None,
    "lcp": lambda r: r.timing.largest_contentful_paint or None,
    "cls": lambda r: r.timing.cumulative_layout_shift,
    "tbt": lambda r: r.timing.total_blocking_time,
    "tti": lambda r: r.timing.time_to_interactive,
    "ttfb": lambda r: r.timing.time_to_first_byte or None,
    "inp": lambda r: r.timing.interaction_to_next_paint,
    "first_paint": lambda r: r.timing.first_paint or None,
    "dom_content_loaded": lambda r: r.timing.dom_content_loaded or None,
    "dom_complete": lambda r: r.timing.dom_complete or None,
    "load": lambda r: r.timing.load or None,
    "regulatory_friction_delay": lambda r: r.timing.regulatory_friction_delay,
    "banner_blocking_estimate": lambda r: r.timing.banner_blocking_estimate,
    "banner_render": _banner("render_time"),
    "banner_visibility": _banner("visibility_time"),
    "banner_interactive": lambda r: r.banner.interactive_time or None,
    "banner_hydration": _banner("hydration_time"),
    "banner_layout_shift": _banner("layout_shift"),
    "viewport_coverage": _banner("viewport_coverage"),
    "total_size_kb": lambda r: bytes_to_kb(r.size.total_bytes),
    "third_party_size_kb": lambda r: bytes_to_kb(r.size.third_party_bytes),
    "bundled_size_kb": lambda r: bytes_to_kb(r.size.bundled_bytes),
    "script_size_kb": lambda r: bytes_to_kb(r.size.script_bytes),
    "resource_count": lambda r: r.resource_count,
    "third_party_resource_count": lambda r: r.third_party_resource_count,
    "vendor_size_kb": lambda r: r.third_party.vendor_size_kb,
    "vendor_download_ms": lambda r: r.third_party.vendor_download_ms,
    "script_load_ms": lambda r: r.third_party.mean_script_load_ms,
    "third_party_domains": lambda r: r.third_party.third_party_domains,
}


def summarize_run(
    records: list[IterationRecord],
    trim_percent: float = DEFAULT_TRIM_PERCENT,
    stability_threshold: float = DEFAULT_STABILITY_THRESHOLD,
    warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
) -> RunSummary:
    """Reduce the iteration records of one run to per-metric summaries."""
    if not records:
        raise ValueError("Cannot summarise a run with no iterations")

    metrics: dict[str, MetricSummary] = {}
    unstable: list[str] = []
    for name, extract in METRIC_EXTRACTORS.items():
        values = [float(v) for v in (extract(r) for r in records) if v is not None]
        if not values:
            continue
        summary = calculate_statistics(name, values, trim_percent, stability_threshold)
        metrics[name] = summary
        if len(values) < 2:
            continue
        if summary.cv > warning_threshold:
            unstable.append(name)
            logger.warning(
                "Metric %s is unstable: CV %.1f%% over %d iterations (mean %.2f, stddev %.2f)",
                name, summary.cv, summary.samples, summary.mean, summary.stddev,
            )
        elif not summary.stable:
            logger.info("Metric %s varies: CV %.1f%%", name, summary.cv)

    detected = sum(1 for r in records if r.banner.detected)
    detection_rate = detected / len(records)
    if detected == 0:
        logger.warning("Cookie banner was not detected in any of %d iterations", len(records))
    elif detected < len(records):
        logger.warning(
            "Cookie banner detected in only %d of %d iterations", detected, len(records),
        )

    return RunSummary(
        iterations=len(records),
        metrics=metrics,
        banner_detection_rate=detection_rate,
        unstable_metrics=tuple(unstable),
    )
